"""
Log formatting for the device agent.

Two renderings of the same records:
    • JSON lines in production, one object per record, for log shippers
    • A compact console line otherwise, with the triage tags inline:

        08:30:01 INFO     [3f9a1c2e] lifeline.alerts.submission: Alert ALR-… delivered [Fire / High]  urgency=High category=Fire

Request correlation lives in a ContextVar set by the HTTP middleware. A
handler filter copies it onto each record, so both formatters only read
record attributes.

Usage:
    from lifeline.core.logging_config import setup_logging

    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("Alert queued", extra={"alert_id": "ALR-1A2B3C4D5E6F", "state": "queued"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, TextIO

from lifeline.core.config import Settings, settings

_request_context: ContextVar[Optional[Dict[str, str]]] = ContextVar(
    "request_context", default=None
)

# record attributes passed via ``extra=`` by the alert and model code
ALERT_TAGS = ("alert_id", "state", "urgency", "category", "artifact", "pending_count")
HTTP_TAGS = ("endpoint", "status_code", "duration_ms")
CONSOLE_TAGS = ("state", "urgency", "category", "artifact", "pending_count")

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


def set_request_context(**fields: str) -> None:
    """Bind request fields for the current task; no arguments clears them."""
    _request_context.set(fields or None)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _request_context.get() or {}
        record.request_id = ctx.get("request_id")
        if ctx.get("endpoint") and not hasattr(record, "endpoint"):
            record.endpoint = ctx["endpoint"]
        return True


def _tags(record: logging.LogRecord, names: Iterable[str]) -> Dict[str, Any]:
    return {n: getattr(record, n) for n in names if getattr(record, n, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if getattr(record, "request_id", None):
            entry["request_id"] = record.request_id
        entry.update(_tags(record, ALERT_TAGS + HTTP_TAGS))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_type"] = record.exc_info[0].__name__
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"

        request_id = getattr(record, "request_id", None)
        prefix = f" [{request_id[:8]}]" if request_id else ""
        line = f"{self.formatTime(record, '%H:%M:%S')} {level}{prefix} {record.name}: {record.getMessage()}"

        tags = _tags(record, CONSOLE_TAGS)
        if tags:
            line += "  " + " ".join(f"{k}={v}" for k, v in tags.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    config: Optional[Settings] = None,
    stream: Optional[TextIO] = None,
) -> logging.Handler:
    """
    Replace the root handlers with one stream handler.

    JSON in production, console lines elsewhere; colour only when writing
    to a terminal.
    """
    config = config or settings
    out = stream or sys.stdout

    handler = logging.StreamHandler(out)
    handler.addFilter(RequestContextFilter())
    if config.is_production:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(color=out.isatty()))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler
