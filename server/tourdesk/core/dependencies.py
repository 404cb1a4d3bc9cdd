"""FastAPI dependencies for authentication and idempotency keys."""

from typing import Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from .config import settings
from .exceptions import AuthenticationError, AuthorizationError, ValidationError

ADMIN_ROLE = "admin"


def _decode_token(authorization: str) -> dict:
    """Decode a ``Bearer <jwt>`` header into the caller's claims."""
    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError("Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError("Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except PyJWTError:
        raise AuthenticationError("Token validation failed")

    return {
        "user_id": payload["sub"],
        "email": payload.get("email"),
        "roles": payload.get("roles", []),
    }


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> dict:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        dict: User information from validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError("Authorization header missing")
    return _decode_token(authorization)


async def get_optional_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[dict]:
    """Like ``get_current_user`` but anonymous callers get ``None``."""
    if not authorization:
        return None
    return _decode_token(authorization)


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Allow only callers whose token carries the admin role."""
    if ADMIN_ROLE not in user["roles"]:
        raise AuthorizationError(required_permissions=[ADMIN_ROLE])
    return user


def is_admin(user: Optional[dict]) -> bool:
    return bool(user) and ADMIN_ROLE in user["roles"]


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate the optional Idempotency-Key header.

    Raises:
        ValidationError: If the key is longer than 255 characters
    """
    if idempotency_key is None:
        return None

    idempotency_key = idempotency_key.strip()
    if not idempotency_key or len(idempotency_key) > 255:
        raise ValidationError("Idempotency key must be between 1 and 255 characters")
    return idempotency_key


OptionalAuth = Depends(get_optional_user)
AdminAuth = Depends(require_admin)
IdempotencyKey = Depends(get_idempotency_key)
