"""JWT handling for tokens issued by the session provider.

Sign-in itself lives with the identity collaborator. This service only
verifies the access tokens it hands out; ``create_access_token`` exists so
the CLI and tests can mint tokens against the shared secret.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from billsync.config import settings
from billsync.core.auth.schemas import TokenData


def create_access_token(
    user_id: str,
    expires_delta: timedelta | None = None,
    additional_claims: dict[str, Any] | None = None,
) -> str:
    """Create a short-lived JWT access token.

    Args:
        user_id: The user's identifier
        expires_delta: Optional custom expiration time
        additional_claims: Optional extra claims to include

    Returns:
        Encoded JWT access token
    """
    now = datetime.now(UTC)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    to_encode: dict[str, Any] = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenData | None:
    """Decode and validate a JWT token.

    Returns:
        TokenData if valid, None if invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    exp = payload.get("exp")
    if not user_id or exp is None:
        return None

    return TokenData(
        user_id=str(user_id),
        exp=datetime.fromtimestamp(exp, tz=UTC),
        type=payload.get("type", "access"),
    )
