"""
Structured logging configuration for modelrelay.

Modules log an event name plus extra= fields; both formatters print
those fields, and the request id bound for the current call, with
every record.

Environments:
- production: JSON to stdout (machine-readable)
- development/staging/test: Colored text to stderr (human-readable)

Usage:
    from modelrelay.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from RELAY_ENV

    logger = logging.getLogger(__name__)
    logger.info("llm_call_completed", extra={
        "model": "o4-mini",
        "provider": "openai",
        "duration_ms": 812.4,
    })
"""

from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Request Context ──────────────────────────────────────────────────

# contextvars, not thread-local: each asyncio task keeps its own value.
_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "modelrelay_request_id", default=None
)


def set_request_id(request_id: str) -> None:
    """
    Bind a request id to the current context.

    All log records emitted afterwards in the same task (or thread)
    carry it, which ties the router, adapter and tool logs of one call
    together.
    """
    _request_id.set(request_id)


def get_request_id() -> Optional[str]:
    """Get the current request id, or None outside a bound call."""
    return _request_id.get()


def clear_request_id() -> None:
    """Clear the request id from the current context."""
    _request_id.set(None)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects request_id into every log record from the current context."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = get_request_id()
        if request_id:
            record.request_id = request_id  # type: ignore[attr-defined]
        return True


# ─── Formatters ───────────────────────────────────────────────────────


# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed via extra= (and request_id), request_id first."""
    fields = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    if "request_id" in fields:
        fields = {"request_id": fields.pop("request_id"), **fields}
    return fields


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line:
        {"timestamp": ..., "level": "INFO", "logger": "modelrelay.llm.service",
         "message": "llm_call_completed", "request_id": ..., "model": "o4-mini"}
    Values json cannot encode are written as str().
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_extra_fields(record),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class DevFormatter(logging.Formatter):
    """[HH:MM:SS] LEVEL logger: event [key=value ...], colored by level."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        fields = " ".join(
            f"{key}={value}"
            for key, value in _extra_fields(record).items()
            if value is not None
        )
        line = (
            f"[{self.formatTime(record, '%H:%M:%S')}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        if fields:
            line += f" [{fields}]"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


# ─── Configuration ────────────────────────────────────────────────────


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Configure the root logger based on environment.

    Args:
        env: Override environment. If None, reads from RELAY_ENV
             (defaults to "development").
        level: Log level (default: INFO).

    Behavior:
        - production → JSONFormatter to stdout
        - everything else → DevFormatter to stderr
    """
    env = env or os.environ.get("RELAY_ENV", "development").lower().strip()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())

    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)

    # SDK request logs duplicate ours
    for noisy in ("httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
