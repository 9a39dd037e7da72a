"""Authentication boundary: bearer token verification."""

from app.modules.auth.dependencies import (
    CurrentUser,
    get_current_user,
    get_current_user_id,
    get_optional_user,
    require_admin,
)
from app.modules.auth.jwt import TokenPayload, validate_token

__all__ = [
    "CurrentUser",
    "TokenPayload",
    "get_current_user",
    "get_current_user_id",
    "get_optional_user",
    "require_admin",
    "validate_token",
]
