"""
Logging helpers shared by every backend component.

Usage:
    from utils.ml_logging import get_logger

    logger = get_logger("scheduling.scheduler")
    logger.info("Dispatched %d schedules", count)
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

from opentelemetry import trace

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s [trace=%(trace_id)s span=%(span_id)s]"

_HANDLER: Optional[logging.Handler] = None


class TraceLogFilter(logging.Filter):
    """Attach the active OpenTelemetry trace/span ids to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = trace.get_current_span().get_span_context()
        if ctx and ctx.is_valid:
            record.trace_id = format(ctx.trace_id, "032x")
            record.span_id = format(ctx.span_id, "016x")
        else:
            record.trace_id = "-"
            record.span_id = "-"
        return True


def _shared_handler() -> logging.Handler:
    global _HANDLER
    if _HANDLER is None:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(os.getenv("LOG_FORMAT", DEFAULT_FORMAT)))
        handler.addFilter(TraceLogFilter())
        _HANDLER = handler
    return _HANDLER


def get_logger(name: str = "murphy", level: Optional[str] = None) -> logging.Logger:
    """
    Return a namespaced logger wired to the shared stream handler.

    :param name: Component name, e.g. ``"channels.voice"``
    :param level: Optional level override; defaults to ``LOG_LEVEL`` or INFO
    """
    logger = logging.getLogger(name if name.startswith("murphy") else f"murphy.{name}")
    root = logging.getLogger("murphy")
    if _shared_handler() not in root.handlers:
        root.addHandler(_shared_handler())
        root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    if level:
        logger.setLevel(level.upper())
    return logger


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Apply configured level/format to the shared handler after settings load."""
    handler = _shared_handler()
    if fmt:
        handler.setFormatter(logging.Formatter(fmt))
    if level:
        logging.getLogger("murphy").setLevel(level.upper())


def mask_phone(phone: Optional[str]) -> str:
    """Mask a phone number down to its last 4 digits for log output."""
    if not phone:
        return "<none>"
    digits = "".join(ch for ch in phone if ch.isdigit())
    return f"***{digits[-4:]}" if len(digits) >= 4 else "***"
