"""
Retry policy for model requests.

``RetryPolicy`` decides whether a failed request is retried and how long to
wait first. The attempts themselves are driven by tenacity's AsyncRetrying,
configured so that every decision comes from ``RetryPolicy.should_retry``.

Two ways to drive it:

    # Single awaitable
    response = await policy.call(lambda: model.request(...), cancellation=token)

    # Attempt blocks (streaming)
    async for attempt in policy.attempts(cancellation=token):
        with attempt:
            async for chunk in model.request_stream(...):
                ...

When retries stop, the last error is re-raised unchanged; callers wrap it
with ``policy.wrap_failure``.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_never

from agentloop.config.schema import RetryConfig
from agentloop.exceptions import (
    ModelRequestFailed,
    ModelTimeoutError,
    RateLimited,
    RetriesExhausted,
    RunCancelled,
    RunError,
    TransportError,
)
from agentloop.runtime.control import CancellationToken
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    FATAL = "fatal"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.FATAL


def classify_error(error: BaseException) -> ErrorKind:
    """Map an exception raised by a model request to an ErrorKind."""
    if isinstance(error, RunCancelled):
        return ErrorKind.FATAL
    if isinstance(error, RateLimited):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, (ModelTimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (TransportError, ConnectionError, OSError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


@dataclass(frozen=True)
class RetryDecision:
    should_retry: bool
    delay: float = 0.0
    reason: str | None = None

    @classmethod
    def retry_after(cls, delay: float) -> "RetryDecision":
        return cls(should_retry=True, delay=max(0.0, delay))

    @classmethod
    def give_up(cls, reason: str) -> "RetryDecision":
        return cls(should_retry=False, reason=reason)


class RetryPolicy:
    """
    Exponential backoff with jitter, bounded by attempts and elapsed time.

    Args:
        config: Retry settings
        rng: Random source for jitter (injectable for tests)
    """

    def __init__(self, config: RetryConfig | None = None, *, rng: random.Random | None = None):
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def compute_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt number ``attempt``."""
        cfg = self.config
        delay = cfg.base_delay * cfg.multiplier ** (attempt - 1)
        delay += delay * cfg.jitter * self._rng.random()
        return min(delay, cfg.max_delay)

    def should_retry(self, error: BaseException, attempt: int, elapsed: float) -> RetryDecision:
        """
        Decide what to do after attempt number ``attempt`` failed with ``error``.

        Args:
            error: The exception raised by the attempt
            attempt: 1-based number of the failed attempt
            elapsed: Seconds since the first attempt started
        """
        kind = classify_error(error)
        if not kind.retryable:
            return RetryDecision.give_up("fatal")
        if attempt >= self.config.max_attempts:
            return RetryDecision.give_up("max_attempts")

        retry_after = getattr(error, "retry_after", None)
        if kind is ErrorKind.RATE_LIMITED and retry_after is not None:
            delay = float(retry_after)
        else:
            delay = self.compute_delay(attempt)

        max_elapsed = self.config.max_elapsed
        if max_elapsed is not None and elapsed + delay > max_elapsed:
            return RetryDecision.give_up("max_elapsed")
        return RetryDecision.retry_after(delay)

    def attempts(self, cancellation: CancellationToken | None = None) -> AsyncRetrying:
        """Build an AsyncRetrying driven by this policy."""
        decisions: dict[int, RetryDecision] = {}

        def _retry(retry_state: RetryCallState) -> bool:
            outcome = retry_state.outcome
            if outcome is None or not outcome.failed:
                return False
            error = outcome.exception()
            decision = self.should_retry(
                error, retry_state.attempt_number, retry_state.seconds_since_start or 0.0
            )
            decisions[retry_state.attempt_number] = decision
            if (
                not decision.should_retry
                and isinstance(error, Exception)
                and not isinstance(error, RunCancelled)
            ):
                logger.warning(
                    "model_request_giving_up",
                    attempt=retry_state.attempt_number,
                    reason=decision.reason,
                    error=str(error),
                    error_type=type(error).__name__,
                )
            return decision.should_retry

        def _wait(retry_state: RetryCallState) -> float:
            decision = decisions.get(retry_state.attempt_number)
            return decision.delay if decision else 0.0

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "model_request_retrying",
                attempt=retry_state.attempt_number,
                delay=round(_wait(retry_state), 3),
                error=str(error),
                error_type=type(error).__name__,
                error_kind=classify_error(error).value if error else None,
            )

        async def _sleep(delay: float) -> None:
            if cancellation is None:
                await asyncio.sleep(delay)
            elif await cancellation.sleep(delay):
                raise RunCancelled(cancellation.reason)

        return AsyncRetrying(
            retry=_retry,
            wait=_wait,
            stop=stop_never,
            sleep=_sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        cancellation: CancellationToken | None = None,
    ) -> T:
        """
        Await ``fn()`` with retries.

        Raises:
            The last error raised by ``fn``, unchanged.
        """
        async for attempt in self.attempts(cancellation):
            with attempt:
                return await fn()
        raise AssertionError("unreachable")

    def wrap_failure(self, error: BaseException, attempts: int) -> RunError:
        """Turn the error that ended retrying into the RunError the caller sees."""
        if classify_error(error).retryable:
            return RetriesExhausted(
                f"Model request failed after {attempts} attempt(s): {error}",
                attempts=attempts,
                last_error=error,
            )
        return ModelRequestFailed(f"Model request failed: {error}")


__all__ = ["ErrorKind", "classify_error", "RetryDecision", "RetryPolicy"]
