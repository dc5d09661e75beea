"""FastAPI dependencies for authentication.

This module provides FastAPI dependency injection functions for:
- Extracting and validating bearer tokens
- Getting the current authenticated user
- Gating admin-only operations
"""

from typing import Annotated

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from billsync.core.auth.backend import decode_token
from billsync.core.auth.schemas import TokenData
from billsync.core.errors import ForbiddenError, UnauthorizedError
from billsync.modules.identity.models import User
from billsync.modules.identity.repos import IdentityRepository


# HTTP Bearer token security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def get_token_data(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> TokenData:
    """Extract and validate token data from the Authorization header.

    Raises:
        UnauthorizedError: If token is missing, invalid or not an access token
    """
    if not credentials:
        raise UnauthorizedError(
            "Missing authentication token",
            error_code="missing_token",
        )

    token_data = decode_token(credentials.credentials)
    if not token_data:
        raise UnauthorizedError(
            "Invalid or expired token",
            error_code="invalid_token",
        )

    if token_data.type != "access":
        raise UnauthorizedError(
            "Invalid token type",
            error_code="invalid_token_type",
        )

    return token_data


async def get_current_user(
    request: Request,
    token_data: Annotated[TokenData, Depends(get_token_data)],
    identity: Annotated[IdentityRepository, Depends()],
) -> User:
    """Get the currently authenticated user.

    Raises:
        UnauthorizedError: If the token's user no longer exists
    """
    user = await identity.get_user(token_data.user_id)
    if not user:
        raise UnauthorizedError(
            "User not found",
            error_code="user_not_found",
        )

    request.state.user_id = user.id
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


async def get_current_superuser(
    user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Get the current user, ensuring they are a superuser.

    Raises:
        ForbiddenError: If user is not a superuser
    """
    if not user.is_superuser:
        raise ForbiddenError(
            "Superuser privileges required",
            error_code="not_superuser",
        )
    return user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
CurrentSuperuser = Annotated[User, Depends(get_current_superuser)]
