import logging
import json
import os
import sys
from pathlib import Path
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

# Context keys copied from `extra={...}` into the JSON record
CONTEXT_KEYS = (
    "method", "path", "status", "duration_ms", "client_ip",
    "error", "error_type", "service", "operation", "circuit_state",
    "plan_id", "artifact_id", "artifact_key", "transcript_id", "task",
    "attempt", "delay_seconds", "count", "keys", "horizon", "provider",
    "module_number", "column", "index", "email_domain",
)


class CorrelationFilter(logging.Filter):
    """Attach the active request correlation ID and session user to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Imported lazily: correlation middleware imports this module
        from app.middleware.correlation import correlation_id_var, request_user_id_var
        if not getattr(record, "correlation_id", None):
            record.correlation_id = correlation_id_var.get("")
        if not getattr(record, "user_id", None):
            record.user_id = request_user_id_var.get("")
        return True


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter with correlation ID injection"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "event": record.getMessage(),
            "logger": record.name,
        }

        if getattr(record, "correlation_id", None):
            entry["correlation_id"] = record.correlation_id
        if getattr(record, "user_id", None):
            entry["user_id"] = record.user_id

        for key in CONTEXT_KEYS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.levelno >= logging.WARNING:
            entry["source"] = f"{record.filename}:{record.lineno}"

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(entry, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable `event key=value ...` lines for local development"""

    def __init__(self):
        super().__init__('%(asctime)s - %(levelname)s - %(message)s', datefmt='%H:%M:%S')

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = [f"{key}={getattr(record, key)}" for key in CONTEXT_KEYS if hasattr(record, key)]
        if getattr(record, "user_id", None):
            pairs.append(f"user_id={record.user_id}")
        if pairs:
            line = f"{line} " + " ".join(pairs)
        return line


def setup_logger(name: str = "serious_people", level: str = None) -> logging.Logger:
    """
    Setup application logger.

    JSON to stdout when running on a platform with a log drain
    (RAILWAY_ENVIRONMENT or LOG_FORMAT=json), key=value lines plus a
    rotating JSON file otherwise.
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    level = level or os.getenv("LOG_LEVEL", "INFO")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    is_production = bool(os.getenv("RAILWAY_ENVIRONMENT")) or os.getenv("LOG_FORMAT") == "json"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(StructuredFormatter() if is_production else KeyValueFormatter())
    console_handler.addFilter(CorrelationFilter())
    logger.addHandler(console_handler)

    if not is_production and os.getenv("LOG_TO_FILE", "true").lower() == "true":
        try:
            log_dir = Path("logs")
            log_dir.mkdir(exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / "serious_people.log",
                maxBytes=10 * 1024 * 1024,  # 10MB
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(StructuredFormatter())
            file_handler.addFilter(CorrelationFilter())
            logger.addHandler(file_handler)
        except OSError as e:
            # Read-only filesystem on some hosts
            logger.warning("logger.file_handler_unavailable", extra={"error": str(e)})

    return logger


logger = setup_logger()


def get_logger(name: str = None) -> logging.Logger:
    """Get a child of the application logger"""
    if name:
        return logger.getChild(name)
    return logger
