"""
Structured JSON logging utilities.

Sync campaigns run unattended in the background, so log lines are emitted
as single-line JSON objects that can be shipped to any log collector.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

_STANDARD_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message",
    }
)


# Campaign context promoted to top-level keys, in this order
SYNC_CONTEXT_KEYS = ("campaign_id", "entity_type", "entity_id", "operation")


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class StructuredJsonFormatter(logging.Formatter):
    """
    JSON formatter for sync logs.

    Outputs single-line JSON objects with consistent fields:
    - timestamp: record creation time, ISO 8601 in UTC
    - level, logger, message
    - campaign_id / entity_type / entity_id / operation when the record
      carries them (see SyncLoggerAdapter)
    - context: any other fields passed through ``extra``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in SYNC_CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_obj[key] = _jsonable(value)

        context = {
            key: _jsonable(value)
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS
            and key not in SYNC_CONTEXT_KEYS
            and not key.startswith("_")
        }
        if context:
            log_obj["context"] = context

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def configure_structured_logging(
    level: int | str = logging.INFO,
    logger_name: str | None = "lubelogger_sync",
) -> logging.Logger:
    """
    Configure structured JSON logging on stdout.

    Args:
        level: Logging level, numeric or by name (default: INFO)
        logger_name: Logger to configure (default: the package logger; None for root)

    Returns:
        Configured logger instance
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())

    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


def get_sync_logger(name: str) -> logging.Logger:
    """
    Get a logger for sync components with consistent naming.

    Args:
        name: Component name (e.g., 'transport', 'engine')

    Returns:
        Logger instance with name 'lubelogger_sync.{name}'
    """
    return logging.getLogger(f"lubelogger_sync.{name}")


class SyncLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps campaign context onto every record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs
