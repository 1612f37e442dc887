"""
Usage accounting and ceilings.

Request ceilings are checked before each request would be sent (the check
is ``used + 1 > limit``). Token ceilings are checked both before a request
and after a response's usage has been recorded, so a response that pushes a
run over the limit ends it before the next request.
"""

import asyncio

from agentloop.config.schema import UsageLimits
from agentloop.domain.usage import RequestUsage, Usage
from agentloop.exceptions import UsageLimitExceeded
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)


class UsageLimiter:
    """
    Owns the Usage of one run and enforces its UsageLimits.

    Tool tasks record their calls concurrently, so every mutation goes
    through an asyncio.Lock.
    """

    def __init__(self, limits: UsageLimits | None = None, usage: Usage | None = None):
        self.limits = limits or UsageLimits()
        self.usage = usage or Usage()
        self._lock = asyncio.Lock()

    def _exceeded(self, limit_name: str, used: int, limit: int) -> UsageLimitExceeded:
        logger.warning("usage_limit_exceeded", limit_name=limit_name, used=used, limit=limit)
        return UsageLimitExceeded(
            f"Exceeded the {limit_name} limit of {limit} (used: {used})",
            limit_name=limit_name,
            used=used,
            limit=limit,
        )

    def counted_requests(self) -> int:
        """Requests that count against ``max_requests``."""
        if self.limits.count_correction_requests:
            return self.usage.requests
        return self.usage.requests - self.usage.correction_requests

    def check_before_request(self, *, correction: bool = False) -> None:
        """
        Raise UsageLimitExceeded if sending one more request would breach a ceiling.

        Args:
            correction: The request answers a structured-output correction prompt
        """
        max_requests = self.limits.max_requests
        counts = self.limits.count_correction_requests or not correction
        if max_requests is not None and counts:
            if self.counted_requests() + 1 > max_requests:
                raise self._exceeded("request_limit", self.counted_requests() + 1, max_requests)
        self.check_tokens()

    def check_tokens(self) -> None:
        """Raise UsageLimitExceeded if accumulated tokens are over a ceiling."""
        limits = self.limits
        if not limits.has_token_limits():
            return
        for name, used, limit in (
            ("input_tokens_limit", self.usage.input_tokens, limits.max_input_tokens),
            ("output_tokens_limit", self.usage.output_tokens, limits.max_output_tokens),
            ("total_tokens_limit", self.usage.total_tokens, limits.max_total_tokens),
        ):
            if limit is not None and used > limit:
                raise self._exceeded(name, used, limit)

    async def record_response(
        self, request_usage: RequestUsage, *, correction: bool = False
    ) -> None:
        """Add one response's usage, then re-check token ceilings."""
        async with self._lock:
            self.usage.incr(request_usage, correction=correction)
        self.check_tokens()

    def check_tool_calls(self, count: int) -> None:
        """Raise if executing ``count`` more tool calls would breach ``max_tool_calls``."""
        limit = self.limits.max_tool_calls
        if limit is not None and self.usage.tool_calls + count > limit:
            raise self._exceeded("tool_calls_limit", self.usage.tool_calls + count, limit)

    async def record_tool_call(self) -> None:
        async with self._lock:
            self.usage.tool_calls += 1

    def snapshot(self) -> Usage:
        return self.usage.snapshot()


__all__ = ["UsageLimiter"]
