"""
Centralized logging configuration for the participation ingest.

Provides a unified logging format across the pipeline layers:
Format: 2026-01-06T14:05:52Z [source] LEVEL message

Environment Variables:
    LOG_LEVEL: Set to "TRACE", "DEBUG", "INFO" (default) or "WARNING"
               - INFO: Normal operation logs
               - DEBUG: Detailed diagnostic information
               - TRACE: Very verbose low-level diagnostics (Strapi query params, etc.)

Usage:
    from ingest.logging_config import configure_logging, get_logger

    configure_logging(source="ingest")
    logger = get_logger(__name__)
    logger.info("Ingest started")
"""

from __future__ import annotations

import inspect
import logging
import os
import sys
from datetime import UTC, datetime

# Custom TRACE level for very verbose diagnostics
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def _trace(self: logging.Logger, message: object, *args: object, **kw: object) -> None:
    """Log a message at TRACE level (5)."""
    if self.isEnabledFor(TRACE):
        self._log(TRACE, message, args, **kw)  # type: ignore[arg-type]


logging.Logger.trace = _trace  # type: ignore[attr-defined]


class ISO8601Formatter(logging.Formatter):
    """Renders `2026-01-06T14:05:52Z [source] LEVEL message` with UTC record times."""

    def __init__(self, source: str = "ingest"):
        super().__init__()
        self.source = source

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return datetime.fromtimestamp(record.created, UTC).strftime(datefmt or TIMESTAMP_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = f"{self.formatTime(record)} [{self.source}] {record.levelname} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# HTTP stack loggers that would otherwise log every connection
QUIET_LOGGERS = ("urllib3", "requests")

_ENV_LEVELS = {"TRACE": TRACE, "DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARNING": logging.WARNING}


def _level_from_env(debug: bool | None) -> int:
    """LOG_LEVEL (INFO when unset), lowered to DEBUG by the debug flag."""
    level = _ENV_LEVELS.get(os.getenv("LOG_LEVEL", "").strip().upper(), logging.INFO)
    return min(level, logging.DEBUG) if debug else level


def configure_logging(
    source: str = "ingest",
    level: int | None = None,
    debug: bool | None = None,
) -> logging.Logger:
    """Configure logging for a pipeline component.

    Args:
        source: Source identifier for log messages
        level: Logging level (defaults to INFO, or DEBUG/TRACE from LOG_LEVEL env var)
        debug: Enable debug mode (overrides level to DEBUG)

    Returns:
        Configured root logger
    """
    if level is None:
        level = _level_from_env(debug)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ISO8601Formatter(source=source))

    # One stdout handler per process, replacing any earlier configuration
    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name."""
    return logging.getLogger(name)


def setup_logging(
    layer_name: str | None = None,
    level: int | None = None,
    debug_override: bool | None = None,
) -> logging.Logger:
    """
    Set up logging for one ingest layer.

    Args:
        layer_name: Name of the layer (e.g., 'analysis', 'precreation', 'dispatch')
        level: Base logging level (default INFO, or LOG_LEVEL)
        debug_override: Force DEBUG for the ingest packages

    Returns:
        Logger for the calling module
    """
    source = f"ingest/{layer_name}" if layer_name else "ingest"

    configure_logging(source=source, level=level, debug=debug_override)

    frame = inspect.stack()[1]
    module = inspect.getmodule(frame[0])
    logger_name = module.__name__ if module else "ingest"
    logger = get_logger(logger_name)

    if debug_override:
        logging.getLogger("ingest").setLevel(logging.DEBUG)
        logging.getLogger("strapi").setLevel(logging.DEBUG)

    return logger
