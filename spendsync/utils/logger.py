"""
Centralized logging configuration.
Structured key/value logging for sync runs, merges and audit events.
"""
import logging
import logging.config
import json
import sys
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from pathlib import Path


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for the file handler.
    Structured fields passed to StructuredLogger end up as top-level keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            log_entry.update(extra_data)

        log_entry.update({
            "process_id": record.process,
            "thread_id": record.thread,
        })

        return json.dumps(log_entry, ensure_ascii=False, default=str)


# Field names whose values never reach a log sink.
REDACTED_FIELDS = frozenset({
    "access_token",
    "refresh_token",
    "client_secret",
    "webhook_secret",
    "developer_token",
    "authorization",
    "api_key",
})
REDACTED = "***"


def redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values and mask credential-like fields, one level deep into dicts."""
    clean: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key.lower() in REDACTED_FIELDS:
            clean[key] = REDACTED
        elif isinstance(value, dict):
            clean[key] = {k: REDACTED if str(k).lower() in REDACTED_FIELDS else v for k, v in value.items()}
        else:
            clean[key] = value
    return clean


class StructuredLogger:
    """
    Wrapper around a standard logger accepting structured keyword fields.

    ``exc_info=True`` is forwarded to the underlying logger instead of being
    treated as a field. Credential fields are masked before they are emitted.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _log_with_extra(self, level: int, message: str, **kwargs):
        exc_info = kwargs.pop("exc_info", False)
        extra_data = redact(kwargs)
        self.logger.log(level, message, exc_info=exc_info, extra={"extra_data": extra_data})

    def info(self, message: str, **kwargs):
        self._log_with_extra(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._log_with_extra(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        self._log_with_extra(logging.ERROR, message, **kwargs)

    def debug(self, message: str, **kwargs):
        self._log_with_extra(logging.DEBUG, message, **kwargs)


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    enable_console: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for the rotating JSON log file
        enable_console: Whether to log to stdout
    """
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": JSONFormatter,
            },
            "standard": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S"
            }
        },
        "handlers": {},
        "loggers": {
            "spendsync": {
                "level": log_level,
                "handlers": [],
                "propagate": False
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": [],
                "propagate": False
            },
            "sqlalchemy.engine": {
                "level": "WARNING",
                "handlers": [],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": []
        }
    }

    targets = ("spendsync", "uvicorn", "sqlalchemy.engine")

    if enable_console:
        config["handlers"]["console"] = {
            "class": "logging.StreamHandler",
            "stream": sys.stdout,
            "formatter": "standard",
            "level": log_level
        }
        for name in targets:
            config["loggers"][name]["handlers"].append("console")
        config["root"]["handlers"].append("console")

    if log_file:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": log_file,
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "formatter": "json",
            "level": log_level
        }
        for name in targets:
            config["loggers"][name]["handlers"].append("file")
        config["root"]["handlers"].append("file")

    logging.config.dictConfig(config)


def get_logger(name: str) -> StructuredLogger:
    """Return a structured logger namespaced under ``spendsync``."""
    if name.startswith("spendsync"):
        return StructuredLogger(name)
    return StructuredLogger(f"spendsync.{name}")


def log_business_event(
    event_type: str,
    details: Dict[str, Any],
    user_id: Optional[int] = None,
) -> None:
    """
    Record an audit event (merge committed, attribution changed, token refreshed).

    Args:
        event_type: Short event identifier, e.g. 'merge_committed'
        details: Event-specific fields
        user_id: Data owner the event concerns
    """
    audit_logger = get_logger("audit")
    audit_logger.info(
        f"Business event: {event_type}",
        event_type=event_type,
        user_id=user_id,
        **details
    )


def log_performance(
    operation: str,
    duration_ms: float,
    additional_data: Optional[Dict[str, Any]] = None
) -> None:
    """Log the duration of an operation together with optional context."""
    perf_logger = get_logger("performance")
    data = {"duration_ms": round(duration_ms, 2)}
    if additional_data:
        data.update(additional_data)

    perf_logger.info(
        f"Performance: {operation}",
        operation=operation,
        **data
    )
