"""
Logging Utility - Structured JSON Logging

Provides centralized, structured logging configuration for all backend components.
Supports JSON format for production and human-readable format for development.

Usage:
    from utils.logging import get_logger, setup_logging

    setup_logging(level="INFO", format_type="json")
    logger = get_logger(__name__)
    logger.info("Job completed", extra={"job_id": 12, "attempt": 1})
"""

import logging
import logging.config
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson

from utils.config import settings

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime"}


def _json_default(value: Any) -> str:
    return str(value)


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def __init__(self, static_fields: dict[str, Any] | None = None) -> None:
        super().__init__()
        self.static_fields = static_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(self.static_fields)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        return orjson.dumps(payload, default=_json_default).decode("utf-8")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def setup_logging(
    level: str | None = None,
    format_type: str | None = None,
    output: str | None = None,
) -> None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('json' or 'text')
        output: Log output ('stdout' or 'file'); file output also keeps stdout
    """
    level = (level or settings.LOG_LEVEL).upper()
    format_type = format_type or settings.LOG_FORMAT
    output = output or ("file" if settings.LOG_TO_FILE else "stdout")

    formatter_name = "json" if format_type == "json" else "text"

    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": formatter_name,
            "stream": "ext://sys.stdout",
        }
    }

    if output == "file":
        log_dir = Path(settings.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": formatter_name,
            "filename": str(log_dir / "error.log"),
            "level": "ERROR",
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }
        handlers["combined_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": formatter_name,
            "filename": str(log_dir / "combined.log"),
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "text": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
                "json": {
                    "()": JsonFormatter,
                    "static_fields": {
                        "service": settings.APP_NAME,
                        "environment": settings.ENVIRONMENT,
                        "version": settings.APP_VERSION,
                    },
                },
            },
            "handlers": handlers,
            "root": {
                "handlers": list(handlers),
                "level": level,
            },
        }
    )

    # Third-party chatter at INFO drowns the job logs.
    for noisy in ("httpx", "httpcore", "apscheduler.executors.default", "selenium", "WDM"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"log_level": level, "log_format": formatter_name, "log_output": output},
    )
