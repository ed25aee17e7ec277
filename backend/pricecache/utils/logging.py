# backend/pricecache/utils/logging.py
"""
Logging configuration for the price cache.

One stdout handler on the root logger, in either format:
- text: "timestamp | level | correlation_id | logger | message"
- json: one JSON object per line, for log aggregation

Every record carries the correlation ID from utils.context, so one chart
request can be followed through cache reads, backfills, rate-limit waits
and retries.

Log Levels:
    DEBUG   - Cache hits/misses, store reads and writes
    INFO    - Cold starts, backfill decisions, lock contention, rate waits
    WARNING - Degraded paths (throttling retries, Redis unavailable,
              backfill failures served from the store)
    ERROR   - Hard failures (store errors, retries exhausted)

Usage:
    from pricecache.utils import setup_logging

    setup_logging()                         # LOG_LEVEL / LOG_FORMAT from settings
    setup_logging(level="DEBUG", log_format="json")
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pricecache.config import settings
from pricecache.utils.context import get_correlation_id

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"

# Third-party loggers kept at WARNING
NOISY_LOGGERS = [
    "yfinance",
    "peewee",
    "urllib3",
    "urllib3.connectionpool",
    "requests",
    "redis",
    "tenacity",
]

# LogRecord attributes that are not user-supplied "extra" fields
_STANDARD_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "correlation_id", "message", "taskName",
})


class CorrelationIdFilter(logging.Filter):
    """Adds record.correlation_id from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """
    Formats records as single-line JSON.

    Output:
    {
        "timestamp": "2024-01-15T10:30:00.123456+00:00",
        "level": "INFO",
        "logger": "pricecache.services.chart_data_service",
        "correlation_id": "abc-123-def",
        "message": "Backfilling older data for AAPL:1d: [...]",
        "extra": {"symbol": "AAPL"}
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)

        if extra:
            entry["extra"] = extra

        return json.dumps(entry)


def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
) -> None:
    """
    Configure the root logger. Call once at process startup.

    Args:
        level: Log level name; defaults to settings.log_level
        log_format: "text" or "json"; defaults to settings.log_format
        suppress_noisy_loggers: Set third-party loggers to WARNING

    Raises:
        ValueError: Unknown level name
    """
    level_name = level or settings.log_level
    log_level = get_log_level(level_name)
    format_type = (log_format or settings.log_format).lower()

    if format_type == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    if suppress_noisy_loggers:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={level_name}, format={format_type}"
    )


def get_log_level(level_name: str) -> int:
    """
    Convert a level name (case-insensitive, WARN accepted) to its constant.

    Raises:
        ValueError: Unknown level name
    """
    normalized = level_name.upper().strip()
    if normalized == "WARN":
        normalized = "WARNING"

    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    if normalized not in levels:
        raise ValueError(
            f"Invalid log level: '{level_name}'. Valid levels are: {', '.join(levels)}"
        )
    return levels[normalized]
