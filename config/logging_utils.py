"""
Logging Utilities

Configures application logging, tags every record with the id of the
request being served and provides a DEBUG-gated helper for verbose tracing.
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

from config.settings import settings


request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(request_id)s] %(name)s: %(message)s"

_debug_logger = logging.getLogger("debug")


class RequestIdFilter(logging.Filter):
    """Attach the current request id (or '-') to each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get() or "-"
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger once for the process.

    Args:
        level: Log level name; defaults to DEBUG when settings.DEBUG is set,
            otherwise settings.LOG_LEVEL
    """
    if level is None:
        level = "DEBUG" if settings.DEBUG else settings.LOG_LEVEL

    root = logging.getLogger()
    if not any(getattr(h, "_task_manager", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
        handler.addFilter(RequestIdFilter())
        handler._task_manager = True
        root.addHandler(handler)
    root.setLevel(level.upper())


def new_request_id(incoming: Optional[str] = None) -> str:
    """Bind a request id to the current context and return it."""
    request_id = incoming or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Return the id of the request currently being handled, if any."""
    return request_id_var.get()


def log_debug(message: str, *args, prefix: str = "") -> None:
    """
    Log a debug message only if DEBUG is set to True in settings.

    Args:
        message: The message to log
        *args: Additional arguments to format into the message
        prefix: Optional prefix for categorizing logs (e.g., "AUTH", "TOKENS")
    """
    if not settings.DEBUG:
        return

    if prefix:
        message = f"[{prefix}] {message}"

    _debug_logger.debug(message, *args)
