"""
Logging for the relay.

Every record carries the per-request log context (request id, method,
endpoint, and for the SMS webhook the masked sender number) so a single
inbound message can be followed through lookup, fan-out and confirmation.

    middleware ── log_context(request_id, method, endpoint)
        └── /sms/inbound ── bind_log_context(sender="*****0100")
                └── routing / dispatcher / gateway log lines inherit both

Output is JSON lines in production and a coloured single line otherwise.
Phone numbers are only ever logged through ``mask_phone``.

Usage:
    from backend.app.core.logging_config import mask_phone

    logger = logging.getLogger(__name__)
    logger.info("Routed message from %s", mask_phone(phone),
                extra={"sender_class": "untrusted", "recipient_count": 3})
"""

from __future__ import annotations

import json
import logging
import logging.config
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from backend.app.core.config import settings

_log_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar("log_context", default=None)

# Keys the request context may carry, in output order
CONTEXT_FIELDS = ("request_id", "method", "endpoint", "sender")

# Structured values passed through ``extra=`` by the routing path
EXTRA_FIELDS = (
    "sender_class", "action", "recipient_count", "failed_count",
    "duration_ms", "status_code", "operation",
)


def mask_phone(phone: Optional[str]) -> str:
    """Mask all but the last four characters of a phone number."""
    if not phone:
        return "<none>"
    if len(phone) <= 4:
        return "*" * len(phone)
    return "*" * (len(phone) - 4) + phone[-4:]


# ── Request context ──

def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get() or {})


def bind_log_context(**fields: Any) -> None:
    """Add fields to the context of the current request."""
    merged = current_log_context()
    merged.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(merged)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Install a fresh context for the duration of the block."""
    token = _log_context.set({k: v for k, v in fields.items() if v is not None})
    try:
        yield
    finally:
        _log_context.reset(token)


class RequestContextFilter(logging.Filter):
    """Copy the request context onto each record (``-`` when unset)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get() or {}
        for key in CONTEXT_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, ctx.get(key, "-"))
        return True


# ── Formatters ──

class JSONFormatter(logging.Formatter):
    """One JSON object per line for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: getattr(record, key) for key in CONTEXT_FIELDS
            if getattr(record, key, "-") != "-"
        }
        if context:
            entry["context"] = context

        entry.update({key: getattr(record, key) for key in EXTRA_FIELDS if hasattr(record, key)})

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured console output: ``12:00:01 INFO     [ab12cd34] name: message``."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(tag)s%(name)s: %(message)s", "%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        request_id = getattr(record, "request_id", "-")
        sender = getattr(record, "sender", "-")
        tag = "" if request_id == "-" else f"[{request_id[:8]}] "
        if sender != "-":
            tag += f"<{sender}> "
        record.tag = tag

        line = super().format(record)
        color = self.LEVEL_COLORS.get(record.levelname)
        return f"{color}{line}{self.RESET}" if color else line


# ── Setup ──

def setup_logging() -> None:
    """Configure the root logger from settings."""
    level = settings.LOG_LEVEL.upper()
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "relay": {"()": JSONFormatter if settings.is_production else PrettyFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "filters": ["request_context"],
                "formatter": "relay",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            "uvicorn.access": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "INFO" if settings.DATABASE_ECHO else "WARNING"},
        },
    })


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
