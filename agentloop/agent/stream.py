"""
AgentStream - streaming view of one run.

Pull-based: the run only advances when the consumer asks for the next event.
The stream yields RunStarted first and exactly one terminal event last
(RunComplete, Cancelled or Error); it never raises for run failures.
"""

from contextlib import aclosing
from typing import TYPE_CHECKING, AsyncIterator

from agentloop.domain import (
    Cancelled,
    Error,
    ModelRequestStarted,
    RunComplete,
    RunResult,
    StreamEvent,
    TextDelta,
)
from agentloop.exceptions import AgentLoopError

if TYPE_CHECKING:
    from agentloop.agent.executor import AgentRun


class AgentStream:
    """
    Async iterable of StreamEvents for one run. Single use.

    Examples:
        >>> async with agent.run_stream("Hello") as stream:
        >>>     async for event in stream:
        >>>         if isinstance(event, TextDelta):
        >>>             print(event.content, end="")
    """

    def __init__(self, run: "AgentRun"):
        self._run = run
        self._iterator: AsyncIterator[StreamEvent] | None = None
        self.result: RunResult | None = None
        self.error: AgentLoopError | BaseException | None = None

    @property
    def run_id(self) -> str:
        return self._run.run_id

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self._iterator is not None:
            raise RuntimeError("AgentStream can only be consumed once")
        self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        async with aclosing(self._run.iter_events(stream=True)) as events:
            async for event in events:
                if isinstance(event, (RunComplete, Cancelled)):
                    self.result = event.result
                elif isinstance(event, Error):
                    self.error = event.exception
                yield event

    def cancel(self, reason: str = "Stream cancelled") -> None:
        """Request cancellation; the next pulled event is the Cancelled event."""
        self._run.cancellation.cancel(reason)

    def is_cancelled(self) -> bool:
        return self._run.cancellation.is_cancelled()

    async def stream_text(self) -> AsyncIterator[str]:
        """
        Yield text deltas only.

        Text already yielded for a model request that is then retried cannot
        be taken back; consume events directly to handle retries exactly.
        """
        async for event in self:
            if isinstance(event, TextDelta):
                yield event.content

    async def get_result(self) -> RunResult:
        """
        Drain the remaining events and return the result.

        Raises:
            The run's error, when the stream ended with an Error event
        """
        if self._iterator is None:
            async for _ in self:
                pass
        else:
            async for _ in self._iterator:
                pass
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self) -> None:
        if self._iterator is not None:
            await self._iterator.aclose()

    async def __aenter__(self) -> "AgentStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


def discard_retried_text(events: list[StreamEvent]) -> str:
    """
    Text of the final attempt of each request, given a list of events.

    A ModelRequestStarted with ``attempt`` > 1 voids the text received since
    the previous ModelRequestStarted of the same step.
    """
    committed: list[str] = []
    current: list[str] = []
    for event in events:
        if isinstance(event, ModelRequestStarted):
            if event.attempt == 1:
                committed.extend(current)
            current = []
        elif isinstance(event, TextDelta):
            current.append(event.content)
    committed.extend(current)
    return "".join(committed)


__all__ = ["AgentStream", "discard_retried_text"]
