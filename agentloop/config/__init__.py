"""
Configuration system for agentloop.

This module provides:
- Global settings from environment variables
- Per-run execution configuration schemas
- YAML loading of execution configuration
"""

# Settings
from agentloop.config.settings import AgentLoopSettings, settings

# Schema
from agentloop.config.schema import (
    EndStrategy,
    ExecutionConfig,
    RetryConfig,
    UsageLimits,
)

# Exceptions
from agentloop.config.exceptions import ConfigError, ConfigNotFoundError

# Loader
from agentloop.config.loader import load_execution_config

__all__ = [
    # Settings
    "AgentLoopSettings",
    "settings",
    # Schema
    "EndStrategy",
    "ExecutionConfig",
    "RetryConfig",
    "UsageLimits",
    # Exceptions
    "ConfigError",
    "ConfigNotFoundError",
    # Loader
    "load_execution_config",
]
