"""Logging and formatting utilities for credvault.

Standard output belongs to the credential protocol, so every diagnostic
in this module is written to stderr.
"""

from __future__ import annotations

import logging
import sys

from credvault.constants import get_debug


class HelperFormatter(logging.Formatter):
    """Formatter producing ``Warning: ...`` / ``Error: ...`` style lines."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record.

        Args:
            record: The log record to format.

        Returns:
            The formatted log message.
        """
        msg = record.getMessage()

        if record.levelno == logging.DEBUG:
            return f"DEBUG: {msg}"
        elif record.levelno >= logging.ERROR:
            return f"Error: {msg}"
        elif record.levelno == logging.WARNING:
            return f"Warning: {msg}"

        return msg


# Configure module-level logger
_logger = logging.getLogger("credvault")
_logger.setLevel(logging.DEBUG if get_debug() else logging.INFO)
_logger.propagate = False

# Only add handler if one doesn't exist
if not _logger.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setLevel(logging.DEBUG)
    _handler.setFormatter(HelperFormatter())
    _logger.addHandler(_handler)


def log_debug(msg: str) -> None:
    """Log a debug message to stderr (only if CREDVAULT_DEBUG=1).

    Args:
        msg: The message to log.
    """
    if get_debug():
        print(f"DEBUG: {msg}", file=sys.stderr)


def log_warn(msg: str) -> None:
    """Log a warning message to stderr.

    Args:
        msg: The message to log.
    """
    print(f"Warning: {msg}", file=sys.stderr)


def log_error(msg: str) -> None:
    """Log an error message to stderr.

    Args:
        msg: The message to log.
    """
    print(f"Error: {msg}", file=sys.stderr)


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``credvault`` logger (used by the cache daemon)."""
    return _logger.getChild(name)


def format_kv(key: str, value: str) -> str:
    """Format a key-value pair with 2 spaces indent.

    Args:
        key: The key name.
        value: The value.

    Returns:
        Formatted string "  {key}: {value}".
    """
    return f"  {key}: {value}"
