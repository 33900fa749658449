"""
Admin authentication.

Two ways in:
- Session identity (Bearer JWT / X-User-Id) whose account role is admin or super_admin
- Legacy X-Admin-Key shared secret for automation, disabled when ADMIN_KEY is unset

Every admin action is audited with the actor id resolved here.
"""
import hashlib
import hmac
from typing import Optional, Literal
from dataclasses import dataclass
from fastapi import HTTPException, Request

from creditsuite.core.auth import resolve_user_id
from creditsuite.core.config import settings
from creditsuite.core.errors import AuthRequiredError, PermissionError
from creditsuite.models.user import ADMIN_ROLES


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["user", "legacy_key"]
    actor_id: str  # user id or "legacy:<hash>"
    actor_email: Optional[str] = None
    actor_display: Optional[str] = None
    auth_mechanism: Literal["session", "x_admin_key"] = "session"


def verify_legacy_key(request: Request) -> Optional[AdminActor]:
    """Shared-secret admin access; None when ADMIN_KEY is unset or the header does not match."""
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key.encode(), expected_key.encode()):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="legacy_key",
        actor_id=f"legacy:{key_hash}",
        actor_display="Legacy Admin Key",
        auth_mechanism="x_admin_key",
    )


def verify_session_admin(request: Request) -> Optional[AdminActor]:
    """Admin from the session identity. Returns None for anonymous or non-admin callers."""
    from creditsuite.features.users.service import get_user

    user_id = resolve_user_id_safe(request)
    if not user_id:
        return None

    user = get_user(user_id)
    if user is None or user.role not in ADMIN_ROLES:
        return None
    return AdminActor(
        actor_type="user",
        actor_id=user.user_id,
        actor_email=user.email,
        actor_display=user.full_name or user.email,
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """Attempt to authenticate admin from request. Returns AdminActor or None (does not raise)."""
    return verify_session_admin(request) or verify_legacy_key(request)


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.get("/admin/endpoint")
        def admin_endpoint(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = get_admin_actor(request)
    if actor:
        return actor

    has_identity = bool(request.headers.get("X-Admin-Key")) or bool(resolve_user_id_safe(request))
    if not has_identity:
        raise AuthRequiredError("Admin credentials required (Bearer token or X-Admin-Key)")
    raise PermissionError("Admin role required")


def resolve_user_id_safe(request: Request) -> Optional[str]:
    try:
        return resolve_user_id(request)
    except HTTPException:
        return None
