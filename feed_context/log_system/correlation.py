"""Correlation ids for log records.

A correlation id ties together every log line emitted while serving one tool
call (``req_*``) or while the server starts up (``startup_*``).
"""

import logging
import uuid
from contextvars import ContextVar
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
_initialization_correlation_id: Optional[str] = None


def generate_correlation_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


def set_correlation_id(correlation_id: Optional[str]):
    """Set the id for the current context. Returns a token for reset."""
    return _correlation_id.set(correlation_id)


def reset_correlation_id(token) -> None:
    _correlation_id.reset(token)


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get() or _initialization_correlation_id


def set_initialization_correlation_id(correlation_id: str) -> None:
    global _initialization_correlation_id
    _initialization_correlation_id = correlation_id


def clear_initialization_correlation_id() -> None:
    global _initialization_correlation_id
    _initialization_correlation_id = None


class CorrelationIdFilter(logging.Filter):
    """Attach ``correlation_id`` to every record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True
