"""
Structured logging for agentloop.

All modules log through ``get_logger(__name__)`` and emit snake_case event
names with keyword context:

    logger = get_logger(__name__)
    logger.info("tool_execution_completed", tool_name="search", duration=0.12)

The library never configures structlog on import. Applications that want
agentloop's processor chain call ``configure_logging()`` once at startup;
otherwise structlog's defaults (or the host's own configuration) apply.
"""

import logging
import sys

import structlog


def configure_logging(level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Install the structlog processor chain.

    Args:
        level: Log level name, defaults to ``settings.log_level``, or DEBUG
            when ``settings.debug`` is set
        json_logs: Render JSON lines instead of console output,
            defaults to ``settings.log_json``
    """
    from agentloop.config.settings import settings

    if level is None:
        level = "DEBUG" if settings.debug else settings.log_level
    level = level.upper()
    if json_logs is None:
        json_logs = settings.log_json

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None):
    """Get a structlog logger bound to the module name."""
    return structlog.get_logger(name)


__all__ = ["configure_logging", "get_logger"]
