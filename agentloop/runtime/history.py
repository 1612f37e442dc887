"""
History processors.

A processor maps the history to the messages actually sent in one model
request. The run's own history is never modified; processors only shape the
request view. Truncation never starts the kept tail with a tool return whose
tool call was dropped.
"""

import inspect
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Awaitable, Callable, Union

from pydantic_core import to_json

from agentloop.domain.messages import Message, RetryPromptMessage, ToolReturnMessage

if TYPE_CHECKING:
    from agentloop.agent.context import RunContext


class HistoryProcessor(ABC):
    """Base class for request-view history processors."""

    @abstractmethod
    def process(self, messages: list[Message]) -> list[Message]:
        pass

    def __call__(self, messages: list[Message]) -> list[Message]:
        return self.process(messages)


ProcessorFunc = Callable[..., Union[list[Message], Awaitable[list[Message]]]]


def _drop_orphan_returns(messages: list[Message]) -> list[Message]:
    start = 0
    while start < len(messages) and isinstance(
        messages[start], (ToolReturnMessage, RetryPromptMessage)
    ):
        start += 1
    return messages[start:]


class TruncateHistory(HistoryProcessor):
    """
    Keep at most ``max_messages`` messages: the newest ones, plus the first
    message when ``keep_first`` is set (usually the system prompt).
    """

    def __init__(self, max_messages: int, keep_first: bool = True):
        if max_messages < 1:
            raise ValueError("max_messages must be >= 1")
        self.max_messages = max_messages
        self.keep_first = keep_first

    def process(self, messages: list[Message]) -> list[Message]:
        if len(messages) <= self.max_messages:
            return list(messages)

        if self.keep_first:
            keep = self.max_messages - 1
            tail = messages[len(messages) - keep :] if keep else []
            return [messages[0], *_drop_orphan_returns(tail)]
        return _drop_orphan_returns(messages[len(messages) - self.max_messages :])


class TruncateByTokens(HistoryProcessor):
    """
    Keep the newest messages whose estimated size fits in ``max_tokens``.

    Tokens are estimated from the serialized message length divided by
    ``chars_per_token``.
    """

    def __init__(self, max_tokens: int, chars_per_token: float = 4.0, keep_first: bool = True):
        self.max_tokens = max_tokens
        self.chars_per_token = chars_per_token
        self.keep_first = keep_first

    def estimate_tokens(self, message: Message) -> int:
        if isinstance(message, ToolReturnMessage):
            chars = len(message.model_response_str())
        elif hasattr(message, "parts"):
            chars = sum(len(to_json(part)) for part in message.parts)
        else:
            chars = len(message.content)
        return math.ceil(chars / self.chars_per_token)

    def process(self, messages: list[Message]) -> list[Message]:
        if not messages:
            return []

        head: list[Message] = []
        total = 0
        rest = messages
        if self.keep_first:
            head = [messages[0]]
            total = self.estimate_tokens(messages[0])
            rest = messages[1:]

        kept: list[Message] = []
        for message in reversed(rest):
            tokens = self.estimate_tokens(message)
            if total + tokens > self.max_tokens:
                break
            total += tokens
            kept.append(message)
        kept.reverse()

        if len(kept) < len(rest):
            kept = _drop_orphan_returns(kept)
        return head + kept


async def apply_processors(
    processors: list[HistoryProcessor | ProcessorFunc],
    messages: list[Message],
    ctx: "RunContext",
) -> list[Message]:
    """
    Run processors in order. Plain functions may take ``(messages)`` or
    ``(ctx, messages)`` and may be async.
    """
    result = list(messages)
    for processor in processors:
        if isinstance(processor, HistoryProcessor):
            result = processor(result)
            continue
        takes_ctx = len(inspect.signature(processor).parameters) > 1
        value = processor(ctx, result) if takes_ctx else processor(result)
        if inspect.isawaitable(value):
            value = await value
        result = list(value)
    return result


__all__ = ["HistoryProcessor", "TruncateHistory", "TruncateByTokens", "apply_processors"]
