"""
User domain service.
- get_or_create_user(user_id)
- get_user(user_id)
- assign_plan(user_id, plan_id, actor_id)
- UserSession: current_user + refresh() for callers holding a snapshot
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from creditsuite.core.database import get_db_session, users as app_users
from creditsuite.core.errors import NotFoundError, ValidationError
from creditsuite.features.audit.service import MODULE_USERS, record_audit
from creditsuite.features.entitlements.service import FREE_PLAN_ID
from creditsuite.features.plans.catalog import get_plan_catalog
from creditsuite.models.plan import UNLIMITED_CREDITS
from creditsuite.models.user import ADMIN_ROLES, UserAccount

logger = logging.getLogger("creditsuite.users")

VALID_ROLES = frozenset({"user", "editor", "admin", "super_admin"})


def _row_to_user(row) -> UserAccount:
    return UserAccount(
        user_id=row.user_id,
        email=row.email,
        full_name=row.full_name,
        role=row.role,
        status=row.status,
        plan=row.plan_id,
        credits=row.credits,
        created_at=row.created_at,
    )


def get_user(user_id: str) -> Optional[UserAccount]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _row_to_user(row)


def get_or_create_user(
    user_id: str,
    *,
    email: Optional[str] = None,
    full_name: Optional[str] = None,
    role: str = "user",
) -> UserAccount:
    """New accounts start on the free plan with its allotment; admins are unlimited."""
    existing = get_user(user_id)
    if existing:
        return existing

    if role not in VALID_ROLES:
        raise ValidationError(f"Unknown role '{role}'")

    plan = get_plan_catalog().resolve(FREE_PLAN_ID)
    credits = UNLIMITED_CREDITS if role in ADMIN_ROLES else max(plan.credits, UNLIMITED_CREDITS)
    now = datetime.now(timezone.utc)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    email=email,
                    full_name=full_name,
                    role=role,
                    status="active",
                    plan_id=FREE_PLAN_ID,
                    credits=credits,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Created concurrently by another request
        logger.debug(f"User {user_id} already created concurrently")
    else:
        logger.info("[users] account created", extra={"user_id": user_id, "event_type": "user_created"})

    return get_user(user_id)


def assign_plan(user_id: str, plan_id: str, actor_id: Optional[str], *, reset_credits: bool = True) -> UserAccount:
    """Move a user to another plan, optionally resetting the balance to its allotment.

    Admin accounts keep their balance: the unlimited sentinel is part of the role,
    not of the plan.
    """
    plan = get_plan_catalog().get_plan(plan_id)
    if plan is None:
        raise NotFoundError(f"Plan '{plan_id}' not found")

    current = get_user(user_id)
    if current is None:
        raise NotFoundError(f"User '{user_id}' not found")
    if current.role in ADMIN_ROLES:
        reset_credits = False

    values = {"plan_id": plan.id, "updated_at": datetime.now(timezone.utc)}
    if reset_credits:
        values["credits"] = plan.credits

    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError(f"User '{user_id}' not found")

    record_audit(
        actor_id,
        "update_user_plan",
        MODULE_USERS,
        {"user_id": user_id, "plan_id": plan.id, "reset_credits": reset_credits},
    )
    return get_user(user_id)


class UserSession:
    """Session view of one authenticated user.

    `current_user` is the snapshot used for authorization; `refresh()` re-reads
    the authoritative balance after a debit.
    """

    def __init__(self, user: UserAccount):
        self._user = user

    @property
    def current_user(self) -> UserAccount:
        return self._user

    def refresh(self) -> UserAccount:
        fresh = get_user(self._user.user_id)
        if fresh is None:
            raise NotFoundError(f"User '{self._user.user_id}' not found")
        self._user = fresh
        return fresh
