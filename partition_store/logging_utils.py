"""
Structured logging utilities.

Log records are emitted through the standard ``logging`` module with context
passed in ``extra``. In cloud environments the JSON formatter renders each
record, extra fields included, as one line that Log Analytics can index.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .config import LOG_FORMAT_JSON, LOG_FORMAT_NONE, StoreConfig

PACKAGE_LOGGER = "partition_store"

# Attributes every LogRecord carries; anything else came in through ``extra``
_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message", "asctime",
    }
)


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Return the fields a record received through ``extra``."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs single-line JSON objects with:
    - timestamp: ISO 8601 in UTC
    - level, logger, message
    - exception: formatted traceback, when present
    - every field passed through ``extra``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for key, value in record_extras(record).items():
            try:
                json.dumps(value)
                log_obj[key] = value
            except (TypeError, ValueError):
                log_obj[key] = str(value)

        return json.dumps(log_obj, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable formatter that appends extra fields as ``key=value`` pairs."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = record_extras(record)
        if not extras:
            return base
        pairs = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{base} {pairs}"


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
    json_format: bool = True,
) -> logging.Logger:
    """
    Install a stdout handler on a logger.

    Args:
        level: Logging level (default: INFO)
        logger_name: Logger to configure (default: the package logger)
        json_format: Use the JSON formatter, otherwise key=value text

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter() if json_format else KeyValueFormatter())

    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


def configure_from_config(config: StoreConfig) -> logging.Logger | None:
    """Configure package logging once at startup from a StoreConfig.

    Returns None when logging output is disabled.
    """
    if config.log_format == LOG_FORMAT_NONE:
        logging.getLogger(PACKAGE_LOGGER).addHandler(logging.NullHandler())
        return None
    return configure_structured_logging(
        level=config.log_level,
        json_format=config.log_format == LOG_FORMAT_JSON,
    )


def get_store_logger(name: str) -> logging.Logger:
    """
    Get a logger for store components with consistent naming.

    Args:
        name: Component name (e.g., 'dependency', 'registry')

    Returns:
        Logger instance with name 'partition_store.{name}'
    """
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
