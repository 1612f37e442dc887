"""
Tests for logging setup.
"""

import logging
from unittest.mock import patch

from agentloop.config.settings import settings
from agentloop.utils.logging import configure_logging, get_logger


def test_get_logger_leaves_structlog_configuration_alone():
    with patch("structlog.configure") as mock_configure:
        get_logger("agentloop.somewhere")
        get_logger()

    mock_configure.assert_not_called()


def test_configure_logging_uses_settings_level(monkeypatch):
    monkeypatch.setattr(settings, "debug", False)
    monkeypatch.setattr(settings, "log_level", "WARNING")

    with patch("structlog.configure"), patch("structlog.make_filtering_bound_logger") as mock_filter:
        configure_logging()

    mock_filter.assert_called_once_with(logging.WARNING)


def test_debug_setting_forces_debug_level(monkeypatch):
    monkeypatch.setattr(settings, "debug", True)
    monkeypatch.setattr(settings, "log_level", "WARNING")

    with patch("structlog.configure"), patch("structlog.make_filtering_bound_logger") as mock_filter:
        configure_logging()

    mock_filter.assert_called_once_with(logging.DEBUG)


def test_explicit_level_wins_over_debug(monkeypatch):
    monkeypatch.setattr(settings, "debug", True)

    with patch("structlog.configure"), patch("structlog.make_filtering_bound_logger") as mock_filter:
        configure_logging(level="error")

    mock_filter.assert_called_once_with(logging.ERROR)


def test_configure_logging_installs_json_renderer():
    with patch("structlog.configure") as mock_configure:
        configure_logging(level="INFO", json_logs=True)

    processors = mock_configure.call_args.kwargs["processors"]
    assert type(processors[-1]).__name__ == "JSONRenderer"
