"""JSON-lines logging for the auth service with a per-request correlation id."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")

# Record attributes copied into the JSON payload when present.
EXTRA_FIELDS = (
    "path",
    "method",
    "status_code",
    "principal_id",
    "event_kind",
    "outcome",
    "reason",
    "target_kind",
    "target_id",
    "meta",
)

# Keys whose values never reach a log line, at any nesting depth.
REDACTED_KEYS = frozenset(
    {
        "password",
        "current_password",
        "new_password",
        "authorization",
        "access_token",
        "refresh_token",
        "token",
        "secret",
    }
)
REDACTED = "[redacted]"

NOISY_LOGGERS = ("pymongo", "uvicorn.access")


def redact(value: Any) -> Any:
    """Mask credential-bearing keys inside dicts and lists."""
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in REDACTED_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record, stamped with the record's own time."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": CORRELATION_ID_CTX.get(),
        }
        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value in (None, "", {}):
                continue
            payload[key] = redact(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger to stdout as JSON lines."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.addHandler(handler)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_correlation_id(correlation_id: str) -> None:
    CORRELATION_ID_CTX.set(correlation_id)


def get_correlation_id() -> str:
    return CORRELATION_ID_CTX.get()
