"""
Structured logging configuration.

Two kinds of work produce logs here: HTTP requests and scheduled runs
(forecast ticks, backfill, retention). Both push their identifiers into a
shared log context, and a handler filter stamps that context onto every
record emitted while the work is in progress:

    HTTP request      request_id, client_ip, method, endpoint
    forecast tick     job_id, city
    backfill run      run="backfill", then city per city

Contexts nest; an inner ``log_context`` adds to the outer one and the outer
one is restored on exit. Fields passed explicitly through ``extra=`` win
over the context.

Output:
    development   one coloured line, tagged [req:…] or [job:… city]
    production    one JSON object per line (ELK / Loki friendly)

Usage:
    from skycast.app.core.logging_config import log_context, setup_logging

    setup_logging()
    with log_context(job_id="morning", city="Chicago"):
        logger.info("Tick finished")   # carries job_id + city
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from skycast.app.core.config import settings

_log_context: ContextVar[Mapping[str, Any]] = ContextVar("skycast_log_context", default={})

STRUCTURED_FIELDS = (
    "request_id", "client_ip", "method", "endpoint", "status_code",
    "job_id", "city", "run", "backend", "recipient_count",
    "budget_remaining", "inserted", "duration_ms",
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "apscheduler.executors")


@contextmanager
def log_context(**fields: Any) -> Iterator[Mapping[str, Any]]:
    """Layer ``fields`` onto the current log context for the enclosed block."""
    merged = {**_log_context.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


class ContextFilter(logging.Filter):
    """Copy the active log context onto the record (explicit extras win)."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _structured(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in STRUCTURED_FIELDS if hasattr(record, key)}


# ═══════════════════════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_structured(record))
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single line for local runs."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    @staticmethod
    def tag(record: logging.LogRecord) -> str:
        job_id = getattr(record, "job_id", None)
        if job_id:
            city = getattr(record, "city", None)
            return f"[job:{job_id} {city}]" if city else f"[job:{job_id}]"
        run = getattr(record, "run", None)
        if run:
            city = getattr(record, "city", None)
            return f"[{run}:{city}]" if city else f"[{run}]"
        request_id = getattr(record, "request_id", None)
        if request_id:
            return f"[req:{request_id[:8]}]"
        return ""

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        tag = self.tag(record)
        line = (
            f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:<8}{self.RESET}"
            f"{' ' + tag if tag else ''} {record.name}: {record.getMessage()}"
        )
        if record.exc_info and record.exc_info[1] is not None:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


# ═══════════════════════════════════════════════════════════════════════════
# Setup
# ═══════════════════════════════════════════════════════════════════════════

def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """Install one stdout handler on the root logger (settings decide the defaults)."""
    level = level or settings.LOG_LEVEL
    if json_output is None:
        json_output = settings.is_production

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
