"""
Cancellation for runs.

A CancellationToken is a set-once flag shared between the caller and the run.
The run checks it at every suspension point: before each model request,
before forwarding each streamed delta, before each tool starts, and during
retry backoff.
"""

import asyncio

from agentloop.exceptions import RunCancelled


class CancellationToken:
    """
    Cooperative cancellation signal.

    Based on asyncio.Event, supports:
    - Synchronous status check
    - Async wait for the signal
    - Interruptible sleep (used for retry backoff)

    Examples:
        >>> token = CancellationToken()
        >>>
        >>> # From another task
        >>> token.cancel("User pressed stop")
        >>>
        >>> # Inside the run
        >>> token.raise_if_cancelled()
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "Run cancelled") -> None:
        """Set the flag. Later calls keep the first reason."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Async wait for cancellation."""
        await self._event.wait()

    async def sleep(self, delay: float) -> bool:
        """
        Sleep for ``delay`` seconds unless cancelled first.

        Returns:
            True if the sleep was interrupted by cancellation
        """
        if self.is_cancelled():
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise RunCancelled(self._reason)

    @property
    def reason(self) -> str | None:
        return self._reason


__all__ = ["CancellationToken"]
