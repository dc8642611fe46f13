"""
Logging configuration for the report sync pipeline.

Configures the root logger once at process start: console output (colored
or JSON), an optional rotating log file, and quieter levels for chatty
third-party libraries.
"""

import logging
import logging.handlers
import os
import sys

from .formatters import ConsoleFormatter, JSONFormatter

DEFAULT_APP_NAME = "report-sync"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _build_formatter(json_format: bool, app_name: str, colors: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter(include_timestamp=True, include_hostname=True, app_name=app_name)
    if colors:
        return ConsoleFormatter(use_colors=True)
    return logging.Formatter(fmt=_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = DEFAULT_APP_NAME,
    max_bytes: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the application

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, file logging is disabled)
        console_output: Whether to output to stderr
        json_format: Use JSON format for both console and file logs
        app_name: Application name for log context
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers so repeated calls do not duplicate output
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(_build_formatter(json_format, app_name, colors=True))
        root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(_build_formatter(json_format, app_name, colors=False))
        root_logger.addHandler(file_handler)

    # Set levels for noisy third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("opentelemetry").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging initialized: level={level}, file={log_file or 'none'}, "
        f"console={console_output}, json={json_format}"
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically for __name__)"""
    return logging.getLogger(name)


def configure_from_env() -> None:
    """
    Configure logging from environment variables

    Environment variables:
        REPORT_SYNC_LOG_LEVEL: Log level (default: INFO)
        REPORT_SYNC_LOG_FILE: Log file path (default: none)
        REPORT_SYNC_LOG_JSON: Use JSON format (default: false)
        REPORT_SYNC_LOG_CONSOLE: Enable console output (default: true)
    """
    truthy = ("true", "1", "yes")

    setup_logging(
        level=os.getenv("REPORT_SYNC_LOG_LEVEL", "INFO"),
        log_file=os.getenv("REPORT_SYNC_LOG_FILE"),
        console_output=os.getenv("REPORT_SYNC_LOG_CONSOLE", "true").lower() in truthy,
        json_format=os.getenv("REPORT_SYNC_LOG_JSON", "false").lower() in truthy,
    )


def shutdown_logging() -> None:
    """
    Flush and close all root handlers.

    Call during application shutdown so the rotating file handler releases
    its file descriptor.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError) as e:
            sys.stderr.write(f"Failed to close log handler {handler!r}: {e}\n")
        root_logger.removeHandler(handler)
