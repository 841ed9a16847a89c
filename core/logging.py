"""
Structured logging configuration.

JSON lines in production (or with LOG_FORMAT=json), plain text otherwise.
The request middleware and the coaching engine attach ``extra_fields`` (path,
child id, card counts) that the JSON formatter flattens into the record.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from core.config import settings

SERVICE_NAME = "tinywins-coach"

# Chatty third-party loggers held at WARNING
NOISY_LOGGERS = ("sqlalchemy.engine", "urllib3", "redis", "httpx")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = getattr(record, "extra_fields", None)
        if isinstance(extra, dict):
            log_data.update(extra)

        return json.dumps(log_data, default=str)


def build_formatter(log_format: Optional[str] = None) -> logging.Formatter:
    log_format = (log_format or settings.LOG_FORMAT).lower()
    if log_format == "json" or settings.ENVIRONMENT == "production":
        return JSONFormatter()
    return logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def setup_logging(level: Optional[str] = None, log_format: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger once at startup.

    Args:
        level: Overrides LOG_LEVEL.
        log_format: Overrides LOG_FORMAT ("json" or "text").
    """
    log_level = getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(build_formatter(log_format))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
