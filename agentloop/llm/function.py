"""
FunctionModel - a Model backed by plain Python functions.

Used to script model behaviour in tests, and by callers who wire their own
provider client without subclassing Model.
"""

import inspect
from typing import Any, AsyncIterator, Callable

from pydantic import BaseModel, ConfigDict, Field

from agentloop.domain.messages import Message, ModelResponse, TextPart
from agentloop.llm.base import Model, ModelSettings, StreamChunk


class AgentInfo(BaseModel):
    """What a model function is told about the request besides the messages."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    tools: list[Any] = Field(default_factory=list)
    settings: ModelSettings | None = None

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self.tools]


class FunctionModel(Model):
    """
    Model calling ``function(messages, info)`` for each request.

    ``function`` may be sync or async and may return a ModelResponse or a
    plain string (one text part). ``stream_function(messages, info)`` is an
    async generator of StreamChunk or str deltas; when only
    ``stream_function`` is given, ``request`` accumulates its output.
    """

    id: str = "function"
    name: str = "function"
    function: Callable[..., Any] | None = None
    stream_function: Callable[..., AsyncIterator[Any]] | None = None

    def model_post_init(self, __context) -> None:
        if self.function is None and self.stream_function is None:
            raise ValueError("FunctionModel needs a function or a stream_function")

    async def request(self, messages: list[Message], tools=None, settings=None) -> ModelResponse:
        info = AgentInfo(tools=tools or [], settings=settings)
        if self.function is None:
            from agentloop.runtime.accumulator import PartsAccumulator

            acc = PartsAccumulator()
            async for chunk in self._stream(messages, info):
                if chunk.reasoning_content:
                    acc.add_thinking(chunk.reasoning_content)
                if chunk.content:
                    acc.add_text(chunk.content)
                for delta in chunk.tool_calls or []:
                    acc.add_tool_call(delta)
                acc.add_metadata(chunk)
            return acc.build()

        result = self.function(list(messages), info)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, str):
            return ModelResponse(parts=[TextPart(content=result)], model_name=self.name)
        return result

    async def request_stream(
        self, messages: list[Message], tools=None, settings=None
    ) -> AsyncIterator[StreamChunk]:
        if self.stream_function is None:
            async for chunk in super().request_stream(messages, tools, settings):
                yield chunk
            return

        info = AgentInfo(tools=tools or [], settings=settings)
        async for chunk in self._stream(messages, info):
            yield chunk

    async def _stream(self, messages: list[Message], info: AgentInfo) -> AsyncIterator[StreamChunk]:
        async for item in self.stream_function(list(messages), info):
            yield StreamChunk(content=item) if isinstance(item, str) else item


__all__ = ["FunctionModel", "AgentInfo"]
