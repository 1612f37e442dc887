"""
Configuration schemas for a run.

ExecutionConfig is the single object a caller passes to shape one run:
end strategy, usage ceilings, retry behaviour and tool execution limits.
"""

from enum import Enum

from pydantic import BaseModel, Field, model_validator

from agentloop.config.settings import settings


class EndStrategy(str, Enum):
    """When a run accepts output versus continuing to execute tools."""

    EARLY = "early"  # Text in a response is final; its tool calls are skipped
    FIRST_TOOL = "first_tool"  # First tool call's return is the final output
    EXHAUST_TOOLS = "exhaust_tools"  # Run all tools, loop until text-only response


class RetryConfig(BaseModel):
    """
    Retry behaviour for model requests.

    Delay for the n-th retry is ``base_delay * multiplier ** (n - 1)`` plus up to
    ``jitter`` of that value, capped at ``max_delay``.
    """

    max_attempts: int = Field(
        default_factory=lambda: settings.retry_max_attempts,
        ge=1,
        description="Total attempts including the first one",
    )
    base_delay: float = Field(default_factory=lambda: settings.retry_base_delay, ge=0.0)
    max_delay: float = Field(default_factory=lambda: settings.retry_max_delay, ge=0.0)
    multiplier: float = Field(default=2.0, ge=1.0)
    jitter: float = Field(default_factory=lambda: settings.retry_jitter, ge=0.0, le=1.0)
    max_elapsed: float | None = Field(
        default=None, ge=0.0, description="Stop retrying once this many seconds have passed"
    )

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class UsageLimits(BaseModel):
    """Ceilings checked before each model request."""

    max_requests: int | None = Field(default=None, ge=1)
    max_total_tokens: int | None = Field(default=None, ge=1)
    max_input_tokens: int | None = Field(default=None, ge=1)
    max_output_tokens: int | None = Field(default=None, ge=1)
    max_tool_calls: int | None = Field(default=None, ge=0)

    # Whether requests answering a structured-output correction count
    # against max_requests.
    count_correction_requests: bool = True

    def has_token_limits(self) -> bool:
        return any(
            limit is not None
            for limit in (self.max_total_tokens, self.max_input_tokens, self.max_output_tokens)
        )


class ExecutionConfig(BaseModel):
    """
    Runtime execution configuration.
    """

    # Loop configuration
    end_strategy: EndStrategy = Field(
        default=EndStrategy.EXHAUST_TOOLS, description="When to accept final output"
    )
    usage_limits: UsageLimits = Field(default_factory=UsageLimits)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    # Structured output
    output_retries: int = Field(
        default_factory=lambda: settings.output_retries,
        ge=0,
        description="Correction attempts after a structured-output validation failure",
    )

    # Tool execution
    parallel_tool_calls: bool = Field(default=True, description="Execute tools in parallel")
    max_parallel_tools: int = Field(
        default_factory=lambda: settings.max_parallel_tools,
        ge=1,
        description="Maximum parallel tools",
    )
    tool_timeout: float | None = Field(default=None, gt=0, description="Tool execution timeout (seconds)")


__all__ = ["EndStrategy", "RetryConfig", "UsageLimits", "ExecutionConfig"]
