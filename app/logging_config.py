"""
Structured logging configuration with request ID tracking.

JSON output for production, a compact human-readable line for development.
Archive operations attach request_id, user_id and memory_id through
``extra`` so every line can be correlated with the audit trail.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any, Dict, Optional

from app.config import settings

# Context fields rendered up front by both formatters
CONTEXT_FIELDS = ("request_id", "user_id", "memory_id")

_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message", "exc_info",
    "exc_text", "stack_info", "taskName",
}


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """
    Structured JSON formatter for production logging.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = str(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    One line per record for development.

    Context ids are abbreviated; other extra fields trail as key=value.
    """

    ABBREVIATIONS = {"request_id": ("req", 8), "user_id": ("user", 12), "memory_id": ("mem", 8)}

    def format(self, record: logging.LogRecord) -> str:
        parts = [f"[{record.levelname:8s}]", f"{record.name}:{record.lineno}"]

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                label, width = self.ABBREVIATIONS[key]
                parts.append(f"{label}:{str(value)[:width]}")

        message = record.getMessage()
        extras = _extra_fields(record)
        if extras:
            message += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        parts.append(message)

        if record.exc_info:
            parts.append(f"\n{self.formatException(record.exc_info)}")

        return " | ".join(parts)


def setup_logging(use_json: Optional[bool] = None) -> None:
    """
    Set up application logging.

    Args:
        use_json: If True, use JSON formatting. If None, follow LOG_FORMAT.
    """
    if use_json is None:
        use_json = settings.log_format.lower() == "json"

    formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Quiet third-party loggers
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
