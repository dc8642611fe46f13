"""
Log formatters for structured and console logging.

JSONFormatter emits one JSON object per record with any ``extra`` context
(run id, chunk index, task id) nested under "context". ConsoleFormatter
renders the same context as a trailing ``[key=value, ...]`` block.
"""

import asyncio
import json
import logging
import socket
import sys
import traceback
from datetime import UTC, datetime

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_FIELDS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "asctime",
})


def extract_context(record: logging.LogRecord) -> dict:
    """Return the extra context attached to a log record"""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_FIELDS and not key.startswith("_")
    }


def _current_task_name() -> str | None:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging

    Outputs log records as JSON with standard fields plus any extra context.
    """

    def __init__(
        self,
        include_timestamp: bool = True,
        include_hostname: bool = True,
        app_name: str = "report-sync",
    ):
        super().__init__()
        self.include_timestamp = include_timestamp
        self.include_hostname = include_hostname
        self.app_name = app_name
        self.hostname = socket.gethostname() if include_hostname else None

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "app": self.app_name,
        }

        if self.include_timestamp:
            log_data["timestamp"] = datetime.fromtimestamp(record.created, UTC).isoformat()

        if self.hostname:
            log_data["hostname"] = self.hostname

        log_data["source"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        # Coroutine name is more useful than the thread for the event loop workers
        task_name = getattr(record, "taskName", None) or _current_task_name()
        log_data["process"] = {
            "pid": record.process,
            "thread_name": record.threadName,
            "task_name": task_name,
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        context = extract_context(record)
        if context:
            log_data["context"] = context

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with colors
    """

    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        original_levelname = record.levelname
        if self.use_colors and original_levelname in self.COLORS:
            record.levelname = f"{self.COLORS[original_levelname]}{original_levelname}{self.RESET}"

        try:
            formatted = super().format(record)
        finally:
            # Other handlers share this record
            record.levelname = original_levelname

        context = extract_context(record)
        if context:
            formatted += " [" + ", ".join(f"{k}={v}" for k, v in context.items()) + "]"

        return formatted
