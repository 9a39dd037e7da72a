"""FastAPI dependencies resolving the caller from a bearer token."""

import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.modules.auth.jwt import TokenPayload, validate_token

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller."""

    id: uuid.UUID
    is_admin: bool = False


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _payload(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[TokenPayload]:
    if credentials is None:
        return None
    return validate_token(credentials.credentials, "access")


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Resolve the authenticated user.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    payload = _payload(credentials)
    if payload is None:
        raise _unauthorized()
    return CurrentUser(id=uuid.UUID(payload.sub), is_admin=payload.is_admin)


async def get_current_user_id(
    user: CurrentUser = Depends(get_current_user),
) -> uuid.UUID:
    return user.id


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[CurrentUser]:
    """Resolve the caller if a valid token is present; anonymous otherwise."""
    payload = _payload(credentials)
    if payload is None:
        return None
    return CurrentUser(id=uuid.UUID(payload.sub), is_admin=payload.is_admin)


async def require_admin(
    user: CurrentUser = Depends(get_current_user),
) -> CurrentUser:
    """Require the admin role claim.

    Raises:
        HTTPException: 403 for non-admin callers
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user
