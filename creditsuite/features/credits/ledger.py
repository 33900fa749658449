"""
Credit consumption ledger.

Manages account balances with:
- Debit after a successful generation, as one conditional decrement
- Admin grants (top-ups, express credit purchases)
- Append-only ledger rows recording every balance change

The decrement only applies while the balance still covers the cost, so two
requests authorized against the same snapshot cannot both spend the last
credits. The loser gets InsufficientBalanceError and nothing is written.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from creditsuite.core.database import credit_ledger, get_db_session, users as app_users
from creditsuite.core.errors import InsufficientBalanceError, NotFoundError, PersistenceError, ValidationError
from creditsuite.core.logging import get_request_id
from creditsuite.features.audit.service import MODULE_CREDITS, record_audit
from creditsuite.features.entitlements.service import EntitlementResolver
from creditsuite.features.users.service import get_user
from creditsuite.models.ledger import LedgerEntry
from creditsuite.models.plan import UNLIMITED_CREDITS
from creditsuite.models.service import ServiceKey
from creditsuite.models.user import UserAccount

logger = logging.getLogger("creditsuite.credits")


@dataclass(frozen=True)
class DebitResult:
    charged: bool
    cost: int
    new_balance: int
    user: UserAccount


def decrement_if_at_least(session: Session, user_id: str, cost: int) -> Optional[int]:
    """Atomically subtract `cost` when the balance covers it. Returns the new balance or None."""
    # cost >= 0, so the unlimited sentinel (-1) never matches
    result = session.execute(
        update(app_users)
        .where(app_users.c.user_id == user_id)
        .where(app_users.c.credits >= cost)
        .values(credits=app_users.c.credits - cost, updated_at=datetime.now(timezone.utc))
    )
    if result.rowcount != 1:
        return None
    return session.execute(
        select(app_users.c.credits).where(app_users.c.user_id == user_id)
    ).scalar_one()


def _append_entry(
    session: Session,
    *,
    user_id: str,
    event_type: str,
    amount: int,
    balance_after: int,
    service_key: Optional[str] = None,
    request_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    session.execute(
        insert(credit_ledger).values(
            user_id=user_id,
            event_type=event_type,
            service_key=service_key,
            amount=amount,
            balance_after=balance_after,
            request_id=request_id or get_request_id(),
            metadata=metadata or {},
            created_at=datetime.now(timezone.utc),
        )
    )


def debit(
    user: UserAccount,
    resolver: EntitlementResolver,
    service_keys: Iterable[ServiceKey],
    *,
    request_id: Optional[str] = None,
) -> DebitResult:
    """Charge a user for a completed generation.

    `resolver` must be the snapshot that authorized the call; the cost is not
    re-resolved after the generation. Unlimited balances are never written.
    """
    keys = [k if isinstance(k, ServiceKey) else ServiceKey(k) for k in service_keys]
    cost = resolver.total_cost(keys)

    if resolver.unlimited:
        return DebitResult(charged=False, cost=cost, new_balance=UNLIMITED_CREDITS, user=user)

    try:
        with get_db_session() as session:
            new_balance = decrement_if_at_least(session, user.user_id, cost)
            if new_balance is None:
                current = session.execute(
                    select(app_users.c.credits).where(app_users.c.user_id == user.user_id)
                ).scalar_one_or_none()
                if current is None:
                    raise NotFoundError(f"User '{user.user_id}' not found")
                raise InsufficientBalanceError(
                    f"Balance {current} no longer covers cost {cost}",
                    code="concurrent_debit",
                )
            _append_entry(
                session,
                user_id=user.user_id,
                event_type="SPEND",
                amount=-cost,
                balance_after=new_balance,
                service_key=keys[0].value,
                request_id=request_id,
                metadata={"service_keys": [k.value for k in keys], "plan_id": resolver.plan.id},
            )
    except SQLAlchemyError as exc:
        logger.error(
            "[credits] debit write failed",
            extra={"user_id": user.user_id, "event_type": "debit_failed", "error_code": type(exc).__name__},
        )
        raise PersistenceError("Could not record credit usage") from exc

    logger.info(
        f"[credits] debited {cost} (balance={new_balance})",
        extra={"user_id": user.user_id, "event_type": "debit", "service_key": keys[0].value},
    )
    refreshed = get_user(user.user_id) or user
    return DebitResult(charged=True, cost=cost, new_balance=new_balance, user=refreshed)


def grant_credits(
    user_id: str,
    amount: int,
    actor_id: Optional[str],
    *,
    reason: Optional[str] = None,
) -> UserAccount:
    """Add credits to a finite balance. Unlimited accounts are left untouched."""
    if amount <= 0:
        raise ValidationError("Grant amount must be positive")

    try:
        with get_db_session() as session:
            result = session.execute(
                update(app_users)
                .where(app_users.c.user_id == user_id)
                .where(app_users.c.credits != UNLIMITED_CREDITS)
                .values(credits=app_users.c.credits + amount, updated_at=datetime.now(timezone.utc))
            )
            balance = session.execute(
                select(app_users.c.credits).where(app_users.c.user_id == user_id)
            ).scalar_one_or_none()
            if balance is None:
                raise NotFoundError(f"User '{user_id}' not found")
            granted = result.rowcount == 1
            if granted:
                _append_entry(
                    session,
                    user_id=user_id,
                    event_type="GRANT",
                    amount=amount,
                    balance_after=balance,
                    metadata={"reason": reason, "actor_id": actor_id},
                )
    except SQLAlchemyError as exc:
        raise PersistenceError("Could not grant credits") from exc

    if granted:
        record_audit(actor_id, "grant_credits", MODULE_CREDITS, {"user_id": user_id, "amount": amount, "reason": reason})
    else:
        logger.info(f"[credits] grant skipped for unlimited account {user_id}")
    return get_user(user_id)


def recent_entries(user_id: str, limit: int = 20) -> List[LedgerEntry]:
    with get_db_session() as session:
        rows = session.execute(
            select(credit_ledger)
            .where(credit_ledger.c.user_id == user_id)
            .order_by(credit_ledger.c.id.desc())
            .limit(limit)
        ).fetchall()
    return [
        LedgerEntry(
            id=row.id,
            user_id=row.user_id,
            event_type=row.event_type,
            service_key=row.service_key,
            amount=row.amount,
            balance_after=row.balance_after,
            request_id=row.request_id,
            metadata=row._mapping["metadata"],
            created_at=row.created_at,
        )
        for row in rows
    ]
