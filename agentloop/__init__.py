"""
agentloop - agent execution engine.

Drives conversations with a language model: tool invocation, streaming,
retries, cancellation, usage limits and replay-safe history.
"""

from agentloop.agent import Agent, AgentRun, AgentStream, RunContext, RunHandle
from agentloop.config import EndStrategy, ExecutionConfig, RetryConfig, UsageLimits
from agentloop.domain import (
    DeferredToolCall,
    ModelResponse,
    RunResult,
    RunStatus,
    TextPart,
    ThinkingPart,
    ToolApproved,
    ToolCallPart,
    ToolDenied,
    ToolReturnMessage,
    Usage,
    dump_history,
    load_history,
)
from agentloop.exceptions import (
    ApprovalRequired,
    FatalProviderError,
    FatalToolError,
    ModelRetry,
    ModelTimeoutError,
    RateLimited,
    RunError,
    ToolError,
    TransportError,
    UsageLimitExceeded,
)
from agentloop.llm import FunctionModel, Model, StreamChunk
from agentloop.runtime import CancellationToken, TruncateByTokens, TruncateHistory
from agentloop.tools import Tool, tool

__version__ = "0.1.0"

__all__ = [
    "Agent",
    "AgentRun",
    "AgentStream",
    "RunContext",
    "RunHandle",
    "EndStrategy",
    "ExecutionConfig",
    "RetryConfig",
    "UsageLimits",
    "DeferredToolCall",
    "ModelResponse",
    "RunResult",
    "RunStatus",
    "TextPart",
    "ThinkingPart",
    "ToolApproved",
    "ToolCallPart",
    "ToolDenied",
    "ToolReturnMessage",
    "Usage",
    "dump_history",
    "load_history",
    "ApprovalRequired",
    "FatalProviderError",
    "FatalToolError",
    "ModelRetry",
    "ModelTimeoutError",
    "RateLimited",
    "RunError",
    "ToolError",
    "TransportError",
    "UsageLimitExceeded",
    "FunctionModel",
    "Model",
    "StreamChunk",
    "CancellationToken",
    "TruncateByTokens",
    "TruncateHistory",
    "Tool",
    "tool",
    "__version__",
]
