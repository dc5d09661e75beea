"""Logging module with structured logging and request tracking."""

from billsync.core.logging.middleware import RequestIdMiddleware, RequestLoggingMiddleware
from billsync.core.logging.setup import configure_logging


__all__ = [
    "RequestIdMiddleware",
    "RequestLoggingMiddleware",
    "configure_logging",
]
