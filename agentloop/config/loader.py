"""
Load ExecutionConfig from YAML files.

Example file:

    end_strategy: exhaust_tools
    usage_limits:
      max_requests: 20
      max_total_tokens: 50000
    retry:
      max_attempts: 5
      base_delay: 1.0
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from agentloop.config.exceptions import ConfigError, ConfigNotFoundError
from agentloop.config.schema import ExecutionConfig
from agentloop.utils.logging import get_logger

logger = get_logger(__name__)


def load_execution_config(path: str | Path) -> ExecutionConfig:
    """
    Read an ExecutionConfig from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        ExecutionConfig: Validated configuration

    Raises:
        ConfigNotFoundError: If the file does not exist
        ConfigError: If the file is not valid YAML or fails validation
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigNotFoundError(f"Config file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")

    try:
        config = ExecutionConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid execution config in {path}: {e}") from e

    logger.debug("execution_config_loaded", path=str(path), end_strategy=config.end_strategy.value)
    return config


__all__ = ["load_execution_config"]
