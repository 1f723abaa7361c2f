"""Correlation logging context for tracing a single turn across modules.

Provides a logger that attaches the call ID and business ID of the turn
being handled to every log message, so one caller's journey through the
orchestrator can be followed in shared logs.

Usage:
    from receptionist.logging_context import get_call_logger, set_call_context

    set_call_context("CALL-abc123", "biz-42")
    logger = get_call_logger(__name__)
    logger.info("Processing turn")  # record.call_id == "CALL-abc123"
"""

import logging
from contextvars import ContextVar
from typing import Optional

_call_id: ContextVar[str] = ContextVar("call_id", default="NO_CALL_ID")
_business_id: ContextVar[str] = ContextVar("business_id", default="NO_BUSINESS")


def set_call_id(call_id: str) -> None:
    """Set the correlation ID for the current async context."""
    _call_id.set(call_id)


def get_call_id() -> str:
    """Retrieve the current correlation ID."""
    return _call_id.get()


def set_business_id(business_id: str) -> None:
    _business_id.set(business_id)


def get_business_id() -> str:
    return _business_id.get()


def set_call_context(call_id: Optional[str], business_id: Optional[str]) -> None:
    """Set both correlation values, leaving the defaults for missing ones."""
    if call_id:
        set_call_id(call_id)
    if business_id:
        set_business_id(business_id)


class CallContextFilter(logging.Filter):
    """Injects call_id and business_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.call_id = _call_id.get()  # type: ignore[attr-defined]
        record.business_id = _business_id.get()  # type: ignore[attr-defined]
        return True


def get_call_logger(name: str) -> logging.Logger:
    """Return a logger with the CallContextFilter attached.

    The filter adds ``call_id`` and ``business_id`` to each record so
    formatters can include ``%(call_id)s`` in their format string.
    """
    logger = logging.getLogger(name)
    if not any(isinstance(f, CallContextFilter) for f in logger.filters):
        logger.addFilter(CallContextFilter())
    return logger
