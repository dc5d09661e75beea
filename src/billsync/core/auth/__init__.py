"""Authentication module: bearer token verification and user dependencies."""

from billsync.core.auth.backend import create_access_token, decode_token
from billsync.core.auth.dependencies import (
    CurrentSuperuser,
    CurrentUser,
    get_current_superuser,
    get_current_user,
)
from billsync.core.auth.schemas import TokenData


__all__ = [
    # Dependencies
    "CurrentSuperuser",
    "CurrentUser",
    # Schemas
    "TokenData",
    # Token utilities
    "create_access_token",
    "decode_token",
    "get_current_superuser",
    "get_current_user",
]
