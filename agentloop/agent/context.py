"""
RunContext - what tools, dynamic system prompts and output validators see.
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from agentloop.domain.messages import Message, ToolCallPart
from agentloop.domain.usage import Usage

if TYPE_CHECKING:
    from agentloop.runtime.control import CancellationToken

DepsT = TypeVar("DepsT")


@dataclass(frozen=True)
class RunContext(Generic[DepsT]):
    """
    Immutable per-run context.

    Attributes:
        deps: Caller-supplied dependency value
        run_id: Current run identifier
        usage: Live usage of the run (read only for tools)
        messages: History so far (a copy, not the run's own list)
        step: Number of model requests made so far
        cancellation: The run's cancellation token
        tool_name: Set while a tool is executing
        tool_call_id: Set while a tool is executing
        retry: Local retry number of the current tool call
        metadata: Free-form values
    """

    deps: DepsT
    run_id: str
    usage: Usage = field(default_factory=Usage)
    messages: list[Message] = field(default_factory=list)
    step: int = 0
    cancellation: "CancellationToken | None" = None

    # Tool call, set by for_tool()
    tool_name: str | None = None
    tool_call_id: str | None = None
    retry: int = 0

    metadata: dict[str, Any] = field(default_factory=dict)

    def for_tool(self, call: ToolCallPart, retry: int = 0) -> "RunContext[DepsT]":
        """Copy of this context scoped to one tool call."""
        return replace(self, tool_name=call.tool_name, tool_call_id=call.tool_call_id, retry=retry)

    def is_cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.is_cancelled()


__all__ = ["RunContext"]
