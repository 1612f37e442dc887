"""
Model abstraction layer - Provider-agnostic model capability

Responsibilities:
- Define the request interface the run controller calls
- Define the streaming chunk format
- Report usage for every request

Does NOT handle:
- Tool loop logic
- Retries (the run controller drives them)
- Provider wire formats (implementations translate to and from them)
"""

import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator

from pydantic import BaseModel, ConfigDict, Field

from agentloop.domain.messages import (
    Message,
    ModelResponse,
    TextPart,
    ThinkingPart,
    ToolCallPart,
)
from agentloop.domain.usage import RequestUsage

if TYPE_CHECKING:
    from agentloop.tools.base import ToolDefinition


class ToolCallChunk(BaseModel):
    """Incremental piece of one tool call, keyed by ``index`` within the response."""

    index: int = 0
    tool_call_id: str | None = None
    tool_name: str | None = None
    args_delta: str | None = None


class StreamChunk(BaseModel):
    """
    Minimal unit of model streaming output.

    All Model implementations must standardize their vendor-specific
    streaming output to this format.
    """

    model_config = ConfigDict(frozen=False, protected_namespaces=())

    content: str | None = Field(default=None, description="Text content delta")
    reasoning_content: str | None = Field(
        default=None, description="Reasoning content delta (thinking models)"
    )
    tool_calls: list[ToolCallChunk] | None = Field(default=None, description="Tool call deltas")
    usage: RequestUsage | None = Field(
        default=None, description="Usage for the request, usually on the last chunk"
    )
    finish_reason: str | None = Field(
        default=None, description="Finish reason: stop, tool_calls, length, etc."
    )
    model_name: str | None = None


class ModelSettings(BaseModel):
    """Sampling settings forwarded to the model on every request."""

    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    extra: dict[str, Any] = Field(default_factory=dict)


class Model(BaseModel, ABC):
    """
    Unified Model abstract base class.

    Implementations translate ``messages`` (the canonical history) to their
    provider's format. Errors must be raised as ``agentloop.exceptions``
    model errors so the retry policy can classify them.
    """

    id: str = Field(description="Model identifier, format: provider/model-name")
    name: str = Field(default="", description="Model name")

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="allow")

    @abstractmethod
    async def request(
        self,
        messages: list[Message],
        tools: "list[ToolDefinition] | None" = None,
        settings: ModelSettings | None = None,
    ) -> ModelResponse:
        """
        Send one request and return the complete response.

        Args:
            messages: Conversation history, canonical form
            tools: Tool definitions the model may call
            settings: Sampling settings

        Returns:
            ModelResponse: Parts may carry raw (string) tool arguments
        """
        pass

    async def request_stream(
        self,
        messages: list[Message],
        tools: "list[ToolDefinition] | None" = None,
        settings: ModelSettings | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """
        Streaming interface.

        The default implementation replays a complete ``request`` response as
        chunks; providers with native streaming override it.

        Yields:
            StreamChunk: Streaming output chunk
        """
        response = await self.request(messages, tools, settings)
        tool_index = 0
        for part in response.parts:
            if isinstance(part, ThinkingPart):
                yield StreamChunk(reasoning_content=part.content)
            elif isinstance(part, TextPart):
                yield StreamChunk(content=part.content)
            elif isinstance(part, ToolCallPart):
                args = part.args if isinstance(part.args, str) else json.dumps(part.args)
                yield StreamChunk(
                    tool_calls=[
                        ToolCallChunk(
                            index=tool_index,
                            tool_call_id=part.tool_call_id,
                            tool_name=part.tool_name,
                            args_delta=args,
                        )
                    ]
                )
                tool_index += 1
        yield StreamChunk(
            usage=response.usage,
            finish_reason=response.finish_reason,
            model_name=response.model_name,
        )


__all__ = ["Model", "ModelSettings", "StreamChunk", "ToolCallChunk"]
