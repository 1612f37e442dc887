"""
Conversation message models.

History is a list of ``Message`` values. Requests to the model are built from
the whole list; the model answers with a ``ModelResponse`` made of ordered
parts (text, tool calls, thinking).
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .usage import RequestUsage


# ============================================================================
# Response parts
# ============================================================================


class TextPart(BaseModel):
    """Plain text produced by the model."""

    model_config = ConfigDict(frozen=True)

    part_kind: Literal["text"] = "text"
    content: str


class ThinkingPart(BaseModel):
    """Reasoning content (e.g. extended thinking / reasoning_content)."""

    model_config = ConfigDict(frozen=True)

    part_kind: Literal["thinking"] = "thinking"
    content: str
    signature: str | None = None


class ToolCallPart(BaseModel):
    """
    A tool call requested by the model.

    ``args`` is a dict once canonicalized. Raw responses from a model may
    carry the unparsed JSON string instead.
    """

    model_config = ConfigDict(frozen=True)

    part_kind: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] | str = Field(default_factory=dict)

    def args_as_dict(self) -> dict[str, Any]:
        if isinstance(self.args, dict):
            return self.args
        from agentloop.runtime.canonical import canonicalize_args

        return canonicalize_args(self.args)


ResponsePart = Annotated[
    Union[TextPart, ToolCallPart, ThinkingPart],
    Field(discriminator="part_kind"),
]


# ============================================================================
# Messages
# ============================================================================


class SystemPromptMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["system"] = "system"
    content: str


class UserPromptMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user-prompt"] = "user-prompt"
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)


class ModelResponse(BaseModel):
    """A complete response from the model capability."""

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    kind: Literal["response"] = "response"
    parts: list[ResponsePart] = Field(default_factory=list)
    usage: RequestUsage = Field(default_factory=RequestUsage)
    model_name: str | None = None
    finish_reason: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def text_parts(self) -> list[TextPart]:
        return [p for p in self.parts if isinstance(p, TextPart)]

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def thinking_parts(self) -> list[ThinkingPart]:
        return [p for p in self.parts if isinstance(p, ThinkingPart)]

    def text(self) -> str | None:
        """Joined text content, or None when the response has no text."""
        texts = [p.content for p in self.text_parts if p.content]
        if not texts:
            return None
        return "\n\n".join(texts)

    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ToolReturnStatus(str, Enum):
    """Outcome recorded for a tool call."""

    SUCCESS = "success"
    ERROR = "error"
    NOT_FOUND = "not_found"
    SKIPPED = "skipped"  # Recorded but never executed (end strategy)
    DENIED = "denied"  # Approval refused by the caller


class ToolReturnMessage(BaseModel):
    """Result of one tool call, matched to it by ``tool_call_id``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["tool-return"] = "tool-return"
    tool_call_id: str
    tool_name: str
    content: Any = None
    status: ToolReturnStatus = ToolReturnStatus.SUCCESS
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_error(self) -> bool:
        return self.status in (ToolReturnStatus.ERROR, ToolReturnStatus.NOT_FOUND)

    def model_response_str(self) -> str:
        """Content rendered as text for the model."""
        if isinstance(self.content, str):
            return self.content
        from pydantic_core import to_json

        return to_json(self.content).decode()


class RetryPromptMessage(BaseModel):
    """Corrective message asking the model to try again."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["retry-prompt"] = "retry-prompt"
    content: str
    tool_name: str | None = None
    tool_call_id: str | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


Message = Annotated[
    Union[
        SystemPromptMessage,
        UserPromptMessage,
        ModelResponse,
        ToolReturnMessage,
        RetryPromptMessage,
    ],
    Field(discriminator="kind"),
]

_history_adapter = TypeAdapter(list[Message])


def dump_history(messages: list[Message]) -> bytes:
    """Serialize history to JSON bytes."""
    return _history_adapter.dump_json(messages)


def load_history(data: str | bytes) -> list[Message]:
    """Load history previously written by ``dump_history``."""
    return _history_adapter.validate_json(data)


__all__ = [
    "TextPart",
    "ThinkingPart",
    "ToolCallPart",
    "ResponsePart",
    "SystemPromptMessage",
    "UserPromptMessage",
    "ModelResponse",
    "ToolReturnStatus",
    "ToolReturnMessage",
    "RetryPromptMessage",
    "Message",
    "dump_history",
    "load_history",
]
