"""
Event protocol for streaming runs.

A stream is a finite sequence of events ending in exactly one terminal event:
RunComplete, Cancelled or Error.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .messages import ToolCallPart, ToolReturnMessage
from .models import DeferredToolCall, RunResult


class _EventBase(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return False


# ============================================================================
# Lifecycle events
# ============================================================================


class RunStarted(_EventBase):
    event_kind: Literal["run_started"] = "run_started"


class ModelRequestStarted(_EventBase):
    """A model request is about to be sent. ``attempt`` > 1 means a retry:
    deltas from the previous attempt of the same step are void."""

    event_kind: Literal["model_request_started"] = "model_request_started"
    step: int
    attempt: int = 1


# ============================================================================
# Delta events
# ============================================================================


class TextDelta(_EventBase):
    event_kind: Literal["text_delta"] = "text_delta"
    part_index: int
    content: str


class ThinkingDelta(_EventBase):
    event_kind: Literal["thinking_delta"] = "thinking_delta"
    part_index: int
    content: str


class ToolCallDelta(_EventBase):
    event_kind: Literal["tool_call_delta"] = "tool_call_delta"
    part_index: int
    tool_call_id: str | None = None
    tool_name: str | None = None
    args_delta: str | dict[str, Any] | None = None


class ToolCallComplete(_EventBase):
    """Arguments fully received; ``tool_call`` is canonical."""

    event_kind: Literal["tool_call_complete"] = "tool_call_complete"
    tool_call: ToolCallPart


class ToolResult(_EventBase):
    event_kind: Literal["tool_result"] = "tool_result"
    tool_return: ToolReturnMessage


class ToolApprovalRequired(_EventBase):
    event_kind: Literal["tool_approval_required"] = "tool_approval_required"
    deferred: DeferredToolCall


# ============================================================================
# Terminal events
# ============================================================================


class RunComplete(_EventBase):
    event_kind: Literal["run_complete"] = "run_complete"
    result: RunResult

    @property
    def is_terminal(self) -> bool:
        return True


class Cancelled(_EventBase):
    event_kind: Literal["cancelled"] = "cancelled"
    partial_text: str = ""
    partial_thinking: str = ""
    pending_tool_calls: list[ToolCallPart] = Field(default_factory=list)
    result: RunResult | None = None

    @property
    def is_terminal(self) -> bool:
        return True


class Error(_EventBase):
    event_kind: Literal["error"] = "error"
    error: str
    error_type: str
    exception: Any = Field(default=None, exclude=True)

    @property
    def is_terminal(self) -> bool:
        return True


StreamEvent = Annotated[
    Union[
        RunStarted,
        ModelRequestStarted,
        TextDelta,
        ThinkingDelta,
        ToolCallDelta,
        ToolCallComplete,
        ToolResult,
        ToolApprovalRequired,
        RunComplete,
        Cancelled,
        Error,
    ],
    Field(discriminator="event_kind"),
]


__all__ = [
    "RunStarted",
    "ModelRequestStarted",
    "TextDelta",
    "ThinkingDelta",
    "ToolCallDelta",
    "ToolCallComplete",
    "ToolResult",
    "ToolApprovalRequired",
    "RunComplete",
    "Cancelled",
    "Error",
    "StreamEvent",
]
