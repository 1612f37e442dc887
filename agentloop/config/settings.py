"""
Global settings from environment variables.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentLoopSettings(BaseSettings):
    """
    Global configuration loaded from environment variables.

    Environment variables should be prefixed with AGENTLOOP_
    Example: AGENTLOOP_LOG_LEVEL=DEBUG, AGENTLOOP_RETRY_MAX_ATTEMPTS=5
    """

    model_config = SettingsConfigDict(
        env_prefix="AGENTLOOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core settings
    # Forces DEBUG level in configure_logging()
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False

    # Retry defaults (used when ExecutionConfig.retry is not given explicitly)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0.0)
    retry_max_delay: float = Field(default=30.0, ge=0.0)
    retry_jitter: float = Field(default=0.1, ge=0.0, le=1.0)

    # Tool execution defaults
    max_parallel_tools: int = Field(default=10, ge=1)

    # Structured output
    output_retries: int = Field(default=1, ge=0)


# Global settings instance (singleton)
settings = AgentLoopSettings()


__all__ = ["AgentLoopSettings", "settings"]
