"""
Logger wrappers that carry contextual information.

ContextLogger binds key-value pairs (run_id, chunk_index, ...) once and
attaches them to every message as logging ``extra`` fields.
"""

import logging
from typing import Any


class ContextLogger:
    """
    Logger wrapper that adds contextual information to all log messages

    Usage:
        logger = ContextLogger("report_sync.pipeline", run_id="a1b2")
        logger.info("Dispatching chunk", chunk_index=3)
        # Output includes both run_id and chunk_index
    """

    def __init__(self, name: str, **context):
        self.logger = logging.getLogger(name)
        self.context = context

    def _log(self, level: int, msg: str, *args, exc_info=None, **kwargs) -> None:
        if not self.logger.isEnabledFor(level):
            return
        extra = {**self.context, **kwargs}
        self.logger.log(level, msg, *args, exc_info=exc_info, extra=extra, stacklevel=3)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, exc_info=None, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def critical(self, msg: str, *args, exc_info=None, **kwargs) -> None:
        self._log(logging.CRITICAL, msg, *args, exc_info=exc_info, **kwargs)

    def bind(self, **context) -> "ContextLogger":
        """Return a child logger with additional context"""
        return ContextLogger(self.logger.name, **{**self.context, **context})

    def get_context(self) -> dict[str, Any]:
        return self.context.copy()
