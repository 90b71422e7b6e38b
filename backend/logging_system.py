"""
TeamHub — Logging setup

Stdlib logging with per-request correlation, secret redaction and a single
root handler. Every module logs through a named `teamhub.*` logger; this
module only decides how records are stamped and formatted.
"""

from dataclasses import dataclass
from typing import Optional
import contextvars
import logging
import os
import re
import sys
import uuid

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [rid=%(request_id)s] %(message)s"


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None

    @staticmethod
    def create(request_id: Optional[str] = None, correlation_id: Optional[str] = None) -> "RequestContext":
        rid = request_id or str(uuid.uuid4())
        return RequestContext(request_id=rid, correlation_id=correlation_id or rid)


# Async-safe context var (works with FastAPI/asyncio)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


def current_request_id() -> Optional[str]:
    ctx = _context_var.get()
    return ctx.request_id if ctx else None


# ============================================================
# FILTERS
# ============================================================

_REDACTIONS = [
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9\-_\.=]+"), "Bearer [REDACTED]"),
    (re.compile(r"eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+"), "[REDACTED_JWT]"),
    (re.compile(r"\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}"), "[REDACTED_HASH]"),
    (re.compile(r"(?i)\b(password|passwd|token|secret|refresh_token|access_token)=([^\s&,;]+)"), r"\1=[REDACTED]"),
]


def redact(text: str) -> str:
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class RequestIdFilter(logging.Filter):
    """Stamps every record with the current request id ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = current_request_id() or "-"
        return True


class RedactionFilter(logging.Filter):
    """Scrubs credentials from the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Install the root handler once. Safe to call repeatedly."""
    global _configured
    root = logging.getLogger()
    root.setLevel(level or LOG_LEVEL)
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    handler.addFilter(RedactionFilter())
    root.addHandler(handler)
    _configured = True
