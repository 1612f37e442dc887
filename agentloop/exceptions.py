"""
Exception taxonomy for agentloop.

Three families:

- Model errors, raised by model implementations and classified by the
  retry policy (TransportError, RateLimited, FatalProviderError).
- Tool errors, raised by tools and turned into tool-return data by the
  ToolExecutor (ToolError, ModelRetry, ApprovalRequired), except
  FatalToolError which ends the run.
- RunError subclasses, the only errors a caller of ``Agent.run`` sees.
  Each carries the history and usage accumulated before the failure.
"""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentloop.domain.messages import Message, ToolCallPart
    from agentloop.domain.usage import Usage


class AgentLoopError(Exception):
    """Base class for all agentloop errors."""

    pass


# ============================================================================
# Model errors
# ============================================================================


class ModelError(AgentLoopError):
    """Error raised by a model implementation."""

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class TransportError(ModelError):
    """Network or provider-side failure that may succeed on retry."""

    pass


class ModelTimeoutError(TransportError):
    """Model request timed out."""

    pass


class RateLimited(ModelError):
    """Provider rejected the request because of rate limiting."""

    def __init__(
        self,
        message: str = "Rate limited",
        *,
        retry_after: float | None = None,
        status_code: int | None = 429,
        body: Any = None,
    ):
        super().__init__(message, status_code=status_code, body=body)
        self.retry_after = retry_after


class FatalProviderError(ModelError):
    """Authentication, malformed request or other non-retryable provider error."""

    pass


# ============================================================================
# Tool errors
# ============================================================================


class ToolError(AgentLoopError):
    """
    Tool execution failed.

    Retryable errors are re-run locally up to the tool's ``max_retries``
    before being reported to the model.
    """

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ModelRetry(ToolError):
    """
    Ask the model to try again.

    Raised from a tool or an output validator; the message is sent back to
    the model as a correction.
    """

    def __init__(self, message: str):
        super().__init__(message, retryable=False)


class ApprovalRequired(ToolError):
    """Raised from a tool to defer the call until the caller approves it."""

    def __init__(self, message: str = "Approval required", *, metadata: dict | None = None):
        super().__init__(message, retryable=False)
        self.metadata = metadata


class FatalToolError(AgentLoopError):
    """Tool signalled an unrecoverable condition; the run fails."""

    pass


# ============================================================================
# Cancellation
# ============================================================================


class RunCancelled(AgentLoopError):
    """
    Raised at a suspension point once the run's cancellation token is set.

    Caught by the run controller, which turns it into a cancelled result.
    Never escapes ``Agent.run``.
    """

    def __init__(self, reason: str | None = None):
        super().__init__(reason or "Run cancelled")
        self.reason = reason


# ============================================================================
# Output errors
# ============================================================================


class OutputValidationError(AgentLoopError):
    """Model output failed parsing or validation; correctable by the model."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def retry_message(self) -> str:
        return f"{self.message}\n\nFix the errors and try again."


# ============================================================================
# Run errors (caller visible)
# ============================================================================


class RunError(AgentLoopError):
    """
    A run ended in the failed state.

    Attributes:
        history: Canonical history accumulated before the failure
        usage: Usage at the time of failure
        pending_tool_calls: Tool calls from the last response with no return
    """

    def __init__(
        self,
        message: str,
        *,
        history: "list[Message] | None" = None,
        usage: "Usage | None" = None,
        pending_tool_calls: "list[ToolCallPart] | None" = None,
    ):
        super().__init__(message)
        self.message = message
        self.history = list(history or [])
        self.usage = usage
        self.pending_tool_calls = list(pending_tool_calls or [])

    def attach_state(self, history, usage, pending_tool_calls) -> "RunError":
        self.history = list(history)
        self.usage = usage
        self.pending_tool_calls = list(pending_tool_calls)
        return self


class UsageLimitExceeded(RunError):
    """A configured usage ceiling would be exceeded."""

    def __init__(self, message: str, *, limit_name: str, used: int, limit: int, **kwargs):
        super().__init__(message, **kwargs)
        self.limit_name = limit_name
        self.used = used
        self.limit = limit


class RetriesExhausted(RunError):
    """Model request kept failing with retryable errors."""

    def __init__(self, message: str, *, attempts: int, last_error: BaseException, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error


class ModelRequestFailed(RunError):
    """Model request failed with a non-retryable error."""

    pass


class OutputValidationFailed(RunError):
    """Structured output was still invalid after all correction attempts."""

    pass


class ToolExecutionFailed(RunError):
    """A tool raised FatalToolError."""

    pass


class UnexpectedModelBehavior(RunError):
    """Model kept returning responses with neither text nor tool calls."""

    pass


__all__ = [
    "AgentLoopError",
    "ModelError",
    "TransportError",
    "ModelTimeoutError",
    "RateLimited",
    "FatalProviderError",
    "ToolError",
    "ModelRetry",
    "ApprovalRequired",
    "FatalToolError",
    "RunCancelled",
    "OutputValidationError",
    "RunError",
    "UsageLimitExceeded",
    "RetriesExhausted",
    "ModelRequestFailed",
    "OutputValidationFailed",
    "ToolExecutionFailed",
    "UnexpectedModelBehavior",
]
