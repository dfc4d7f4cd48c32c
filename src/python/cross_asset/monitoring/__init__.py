"""
Monitoring helpers: structured logging with a bound per-thread context.
"""

from .logging import (
    BoundLogger,
    ConsoleFormatter,
    JsonFormatter,
    bind,
    clear_context,
    configure_logging,
    get_context,
    unbind,
)

__all__ = [
    "BoundLogger",
    "ConsoleFormatter",
    "JsonFormatter",
    "bind",
    "clear_context",
    "configure_logging",
    "get_context",
    "unbind",
]
