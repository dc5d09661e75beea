"""Database layer - session management, base models, and mixins."""

from billsync.core.database.base import Base, JSONType, TimestampMixin
from billsync.core.database.session import (
    async_engine,
    async_session_factory,
    get_db,
)


__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "async_engine",
    "async_session_factory",
    "get_db",
]
