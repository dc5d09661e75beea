"""Authentication schemas for token handling."""

from datetime import datetime

from pydantic import BaseModel


class TokenData(BaseModel):
    """Data extracted from a session provider JWT.

    Attributes:
        user_id: The user's identifier in the identity store
        exp: Token expiration time
        type: Token type (only access tokens are accepted by the API)
    """

    user_id: str
    exp: datetime
    type: str = "access"
