"""JWT verification for tokens issued by the external auth service.

Tokens are HS256-signed with the shared SECRET_KEY. ``create_token`` mints
tokens with the same secret for internal tooling and tests.
"""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from app.core.config import settings


class TokenPayload(BaseModel):
    """JWT token payload structure."""

    sub: str  # User ID
    exp: datetime
    iat: datetime
    type: str  # "access" or "refresh"
    jti: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE


def create_token(
    user_id: uuid.UUID,
    token_type: str = "access",
    expires_delta: timedelta = timedelta(minutes=15),
    role: Optional[str] = None,
) -> str:
    """Create a signed JWT.

    Args:
        user_id: User UUID
        token_type: "access" or "refresh"
        expires_delta: Token lifetime
        role: Optional role claim (admin tokens carry ADMIN_ROLE)

    Returns:
        str: Encoded token
    """
    now = datetime.utcnow()
    payload = {
        "sub": str(user_id),
        "exp": now + expires_delta,
        "iat": now,
        "type": token_type,
        "jti": str(uuid.uuid4()),
    }
    if role:
        payload["role"] = role

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> TokenPayload | None:
    """Decode a JWT token and check its signature and expiry.

    Returns:
        TokenPayload | None: Decoded payload if valid, None otherwise
    """
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM]
        )
        return TokenPayload(
            sub=payload["sub"],
            exp=datetime.utcfromtimestamp(payload["exp"]),
            iat=datetime.utcfromtimestamp(payload["iat"]),
            type=payload.get("type", "access"),
            jti=payload.get("jti"),
            role=payload.get("role"),
        )
    except (JWTError, KeyError):
        return None


def validate_token(token: str, expected_type: str = "access") -> TokenPayload | None:
    """Validate a JWT token.

    Args:
        token: Encoded JWT token
        expected_type: Expected token type ("access" or "refresh")

    Returns:
        TokenPayload | None: Decoded payload if valid, None otherwise
    """
    payload = decode_token(token)

    if payload is None:
        return None

    if payload.type != expected_type:
        return None

    if payload.exp < datetime.utcnow():
        return None

    try:
        uuid.UUID(payload.sub)
    except ValueError:
        return None

    return payload
