from .logging import configure_logging, get_logger
from .retry import retry_async

__all__ = ["configure_logging", "get_logger", "retry_async"]
