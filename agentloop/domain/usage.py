"""
Token and request usage models.
"""

from pydantic import BaseModel, Field


class RequestUsage(BaseModel):
    """Usage reported by the model for a single request."""

    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    total_tokens: int | None = Field(default=None, ge=0)

    @property
    def total(self) -> int:
        if self.total_tokens is not None:
            return self.total_tokens
        return self.input_tokens + self.output_tokens


class Usage(BaseModel):
    """
    Accumulated usage for one run.

    Counters only ever grow. Mutated through ``UsageLimiter`` while a run is
    in progress; the copy on ``RunResult`` is a snapshot.
    """

    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    tool_calls: int = 0

    # Requests answering a structured-output correction prompt
    correction_requests: int = 0

    def incr(self, request_usage: RequestUsage, *, correction: bool = False) -> None:
        """Add one request's usage."""
        self.requests += 1
        if correction:
            self.correction_requests += 1
        self.input_tokens += request_usage.input_tokens
        self.output_tokens += request_usage.output_tokens
        self.total_tokens += request_usage.total

    def snapshot(self) -> "Usage":
        return self.model_copy()


__all__ = ["RequestUsage", "Usage"]
