"""
Run lifecycle models.

This module contains:
- RunState: States of the run state machine
- RunStatus: Terminal outcome reported on RunResult
- DeferredToolCall / ToolApproved / ToolDenied: approval flow
- RunResult: What a finished run hands back to the caller
"""

from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .messages import Message, ModelResponse, ToolCallPart
from .usage import Usage


# ============================================================================
# Enums
# ============================================================================


class RunState(str, Enum):
    """States of the run controller."""

    AWAITING_MODEL = "awaiting_model"
    EVALUATING_RESPONSE = "evaluating_response"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.DONE, RunState.DEFERRED, RunState.CANCELLED, RunState.FAILED)


class RunStatus(str, Enum):
    """Non-error terminal outcome of a run."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DEFERRED = "deferred"


# ============================================================================
# Deferred tools
# ============================================================================


class DeferredToolCall(BaseModel):
    """A tool call waiting for external approval."""

    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    reason: str | None = None


class ToolApproved(BaseModel):
    """Approve a deferred call, optionally overriding its arguments."""

    override_args: dict[str, Any] | None = None


class ToolDenied(BaseModel):
    """Deny a deferred call; the message is returned to the model."""

    message: str = "The tool call was denied."


def new_run_id() -> str:
    return str(uuid4())


# ============================================================================
# Result
# ============================================================================


class RunResult(BaseModel):
    """
    Result of one run.

    ``history`` is the canonical conversation, safe to persist and pass back
    as ``message_history`` for the next run.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=new_run_id)
    status: RunStatus = RunStatus.COMPLETED
    output: Any = None
    history: list[Message] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)

    # Index in history where this run's messages start
    new_message_index: int = 0

    # Partial state, filled when the run was cancelled or deferred
    partial_text: str = ""
    partial_thinking: str = ""
    pending_tool_calls: list[ToolCallPart] = Field(default_factory=list)
    deferred_tool_calls: list[DeferredToolCall] = Field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.status == RunStatus.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == RunStatus.CANCELLED

    @property
    def is_deferred(self) -> bool:
        return self.status == RunStatus.DEFERRED

    def new_messages(self) -> list[Message]:
        """Messages added by this run."""
        return self.history[self.new_message_index :]

    def last_response(self) -> ModelResponse | None:
        for message in reversed(self.history):
            if isinstance(message, ModelResponse):
                return message
        return None


__all__ = [
    "RunState",
    "RunStatus",
    "DeferredToolCall",
    "ToolApproved",
    "ToolDenied",
    "RunResult",
    "new_run_id",
]
