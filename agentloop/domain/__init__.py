"""
Domain module - Pure domain models with no runtime dependencies.

This module contains messages, usage, run results and stream events.
"""

# Messages
from .messages import (
    Message,
    ModelResponse,
    ResponsePart,
    RetryPromptMessage,
    SystemPromptMessage,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    ToolReturnMessage,
    ToolReturnStatus,
    UserPromptMessage,
    dump_history,
    load_history,
)

# Usage
from .usage import RequestUsage, Usage

# Run lifecycle
from .models import (
    DeferredToolCall,
    RunResult,
    RunState,
    RunStatus,
    ToolApproved,
    ToolDenied,
    new_run_id,
)

# Events
from .events import (
    Cancelled,
    Error,
    ModelRequestStarted,
    RunComplete,
    RunStarted,
    StreamEvent,
    TextDelta,
    ThinkingDelta,
    ToolApprovalRequired,
    ToolCallComplete,
    ToolCallDelta,
    ToolResult,
)

__all__ = [
    # Messages
    "Message",
    "ModelResponse",
    "ResponsePart",
    "RetryPromptMessage",
    "SystemPromptMessage",
    "TextPart",
    "ThinkingPart",
    "ToolCallPart",
    "ToolReturnMessage",
    "ToolReturnStatus",
    "UserPromptMessage",
    "dump_history",
    "load_history",
    # Usage
    "RequestUsage",
    "Usage",
    # Run lifecycle
    "DeferredToolCall",
    "RunResult",
    "RunState",
    "RunStatus",
    "ToolApproved",
    "ToolDenied",
    "new_run_id",
    # Events
    "Cancelled",
    "Error",
    "ModelRequestStarted",
    "RunComplete",
    "RunStarted",
    "StreamEvent",
    "TextDelta",
    "ThinkingDelta",
    "ToolApprovalRequired",
    "ToolCallComplete",
    "ToolCallDelta",
    "ToolResult",
]
