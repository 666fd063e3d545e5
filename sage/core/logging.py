"""
Logging configuration and filters.

Components log through module-level ``logging.getLogger(__name__)``
loggers; this module only wires handlers and formatting for processes
that embed the core.
"""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(owner_id)s] %(message)s"


class OwnerContextFilter(logging.Filter):
    """Ensure every record carries an ``owner_id`` attribute."""

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Stamp a default owner on records that were logged without one.

        Args:
            record: The log record to annotate

        Returns:
            Always True (records are never dropped)
        """
        if not hasattr(record, "owner_id"):
            record.owner_id = "-"
        return True


def configure_logging(level: str | int = "INFO") -> logging.Handler:
    """
    Configure the ``sage`` logger hierarchy.

    Installs a single StreamHandler with the owner-aware format. Calling
    this more than once replaces the handler instead of stacking them.

    Args:
        level: Logging level name or number

    Returns:
        The installed handler
    """
    root = logging.getLogger("sage")
    for existing in list(root.handlers):
        if getattr(existing, "_sage_handler", False):
            root.removeHandler(existing)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(OwnerContextFilter())
    handler._sage_handler = True  # type: ignore[attr-defined]

    root.addHandler(handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return handler
