"""
Auth utilities.

Validates HS256 session JWTs and extracts user_id from request context.
Outside production, falls back to the X-User-Id header (tests, local tools).
"""
from fastapi import Header, HTTPException, Request
from typing import Optional
import jwt
import logging

from creditsuite.core.config import settings
from creditsuite.models.user import UserAccount

logger = logging.getLogger("creditsuite.auth")


def verify_session_jwt(token: str) -> Optional[str]:
    """
    Verify a session JWT and extract user_id.

    Returns:
        user_id from the 'sub' claim, or None when no secret is configured

    Raises:
        HTTPException 401: Invalid or expired token
    """
    if not settings.AUTH_JWT_SECRET:
        logger.debug("No AUTH_JWT_SECRET configured, skipping JWT validation")
        return None

    try:
        payload = jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Token has no subject")
    return str(user_id)


def _header_fallback_allowed() -> bool:
    return settings.ENV.lower() != "production"


def resolve_user_id(request: Request, x_user_id: Optional[str] = None) -> Optional[str]:
    """Identity from Bearer JWT, else X-User-Id (non-production). None when anonymous."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        user_id = verify_session_jwt(auth_header[7:].strip())
        if user_id:
            return user_id

    header_id = x_user_id or request.headers.get("X-User-Id")
    if header_id and _header_fallback_allowed():
        return header_id.strip() or None
    return None


async def get_optional_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Non-production: caller user ID"),
) -> Optional[UserAccount]:
    """Authenticated account, created on first sight; None for guests."""
    user_id = resolve_user_id(request, x_user_id)
    if not user_id:
        return None
    from creditsuite.features.users.service import get_or_create_user
    return get_or_create_user(user_id)


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Non-production: caller user ID"),
) -> UserAccount:
    user = await get_optional_user(request, x_user_id)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization (Bearer JWT) or X-User-Id header",
        )
    return user
