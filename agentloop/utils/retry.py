from typing import Callable

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from agentloop.utils.logging import get_logger

logger = get_logger(__name__)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_call",
        function=getattr(retry_state.fn, "__name__", None),
        attempt=retry_state.attempt_number,
        error=str(error),
    )


def retry_async(
    max_attempts: int = 3,
    min_wait: float = 0.0,
    max_wait: float = 10.0,
    multiplier: float = 1.0,
    predicate: Callable[[BaseException], bool] | None = None,
):
    """
    Decorator for async functions to add retry logic with exponential backoff.

    Only exceptions for which ``predicate`` returns True are retried; the last
    one is re-raised once ``max_attempts`` is reached.
    """
    return retry(
        reraise=True,
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception(predicate or (lambda e: isinstance(e, Exception))),
        before_sleep=_log_before_sleep,
    )


__all__ = ["retry_async"]
