"""
Structured logging for the cross-asset model builder.

Provides:
- A thread-local bound context (``bind``, ``unbind``, ``BoundLogger``) so
  every log line emitted during a calibration stage carries the stage and
  factor it belongs to
- JSON-formatted output for log aggregation
- A human-readable console formatter
- ``configure_logging`` to install either on the root logger

Example:
    >>> configure_logging(level="DEBUG", json_output=False)
    >>> with BoundLogger(stage="fx", factor="USDEUR"):
    ...     logging.getLogger("cross_asset").info("calibrating")
"""

import json
import logging
import sys
import threading
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, List, Optional, Union


class LogContext:
    """Per-thread context fields attached to log records."""

    def __init__(self):
        self.fields: Dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self.fields[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def remove(self, key: str) -> None:
        self.fields.pop(key, None)

    def clear(self) -> None:
        self.fields.clear()

    def copy(self) -> Dict[str, Any]:
        return self.fields.copy()


_local = threading.local()


def get_context() -> LogContext:
    """Get the current thread's logging context."""
    if not hasattr(_local, "context"):
        _local.context = LogContext()
    return _local.context


def bind(**kwargs) -> None:
    """Bind fields to the current logging context."""
    context = get_context()
    for key, value in kwargs.items():
        context.set(key, value)


def unbind(*keys: str) -> None:
    """Remove fields from the current logging context."""
    context = get_context()
    for key in keys:
        context.remove(key)


def clear_context() -> None:
    """Clear all fields from the current logging context."""
    get_context().clear()


class BoundLogger:
    """Context manager for temporarily binding log context."""

    def __init__(self, **kwargs):
        self.bindings = kwargs
        self.previous_values: Dict[str, Any] = {}

    def __enter__(self) -> "BoundLogger":
        context = get_context()
        for key, value in self.bindings.items():
            if key in context.fields:
                self.previous_values[key] = context.fields[key]
            context.set(key, value)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        context = get_context()
        for key in self.bindings:
            if key in self.previous_values:
                context.set(key, self.previous_values[key])
            else:
                context.remove(key)


_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
}


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, include_context: bool = True, include_source: bool = False):
        super().__init__()
        self.include_context = include_context
        self.include_source = include_source

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        result: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        if self.include_context:
            context = get_context().copy()
            if context:
                result["context"] = context

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                result[key] = value

        if record.exc_info:
            result["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        if self.include_source:
            result["source"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        return json.dumps(result, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable console formatter with optional colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        use_colors: bool = False,
        include_context: bool = True,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        super().__init__()
        self.use_colors = use_colors
        self.include_context = include_context
        self.timestamp_format = timestamp_format

    def format(self, record: logging.LogRecord) -> str:
        """Format log record for console output."""
        timestamp = datetime.fromtimestamp(record.created).strftime(self.timestamp_format)
        level = record.levelname

        if self.use_colors:
            level_str = f"{self.COLORS.get(level, '')}{level:8}{self.RESET}"
        else:
            level_str = f"{level:8}"

        line = f"{timestamp} {level_str} [{record.name}] {record.getMessage()}"

        if self.include_context:
            context = get_context().copy()
            if context:
                line += "  | " + " ".join(f"{k}={v}" for k, v in context.items())

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


_installed_handlers: List[logging.Handler] = []
_install_lock = threading.Lock()


def configure_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = False,
    file: Optional[str] = None,
    fmt: Optional[str] = None,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> List[logging.Handler]:
    """
    Install handlers on the root logger, replacing ones installed earlier.

    Args:
        level: Level name or number
        json_output: Use JsonFormatter instead of ConsoleFormatter on stderr
        file: Optional path of a rotating JSON log file
        fmt: Plain logging format string; used for the console when given
            and json_output is False
        max_bytes: Rotation size of the log file
        backup_count: Number of rotated files kept

    Returns:
        The installed handlers
    """
    if isinstance(level, str):
        numeric = logging.getLevelName(level.upper())
        if not isinstance(numeric, int):
            raise ValueError(f"unknown log level: {level}")
        level = numeric

    root = logging.getLogger()
    with _install_lock:
        for handler in _installed_handlers:
            root.removeHandler(handler)
            handler.close()
        _installed_handlers.clear()

        console = logging.StreamHandler(sys.stderr)
        if json_output:
            console.setFormatter(JsonFormatter())
        elif fmt:
            console.setFormatter(logging.Formatter(fmt))
        else:
            console.setFormatter(ConsoleFormatter())
        _installed_handlers.append(console)

        if file:
            file_handler = RotatingFileHandler(file, maxBytes=max_bytes, backupCount=backup_count)
            file_handler.setFormatter(JsonFormatter(include_source=True))
            _installed_handlers.append(file_handler)

        for handler in _installed_handlers:
            root.addHandler(handler)
        root.setLevel(level)

    return list(_installed_handlers)
