"""
Logger factory for the Histora auth service.

Every module does::

    from shared.logging import get_logger
    log = get_logger(__name__)
    log.info("login_success", user_id="...")

Event names are snake_case verbs; context goes in keyword arguments.
"""

from __future__ import annotations

import structlog
from structlog.stdlib import BoundLogger


def get_logger(name: str) -> BoundLogger:
    """Return a structlog logger bound to *name*."""
    return structlog.get_logger(name)


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """
    Bind context to a logger for all subsequent log calls.

    Example:
        >>> log = log_with_context(get_logger(__name__), user_id="123")
        >>> log.info("password_changed")  # includes user_id
    """
    return logger.bind(**context)
