"""
creditsuite/features/entitlements/service.py

Entitlement resolution.

Handles:
- Plan resolution for a user (exact id, then `free`, then a closed placeholder)
- Per-service access, cost and affordability checks against a plan snapshot
- Combined gate used right before a paid generation

Everything here is a pure computation over an already-loaded snapshot.
"Not allowed" is an ordinary outcome, reported through EntitlementStatus
rather than raised.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from creditsuite.models.plan import DEFAULT_CREDITS_PER_USE, Plan, is_unlimited, placeholder_plan
from creditsuite.models.service import ServiceKey, label_for
from creditsuite.models.user import UserAccount

logger = logging.getLogger("creditsuite.entitlements")

FREE_PLAN_ID = "free"


class EntitlementStatus(str, Enum):
    ALLOWED = "ALLOWED"
    ACCESS_DENIED = "ACCESS_DENIED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class UpsellPrompt(str, Enum):
    """What the client should offer when a check is denied."""
    UPGRADE = "upgrade"
    BUY_CREDITS = "buy_credits"
    SIGNUP = "signup"


@dataclass(frozen=True)
class EntitlementCheck:
    status: EntitlementStatus
    service_keys: Tuple[ServiceKey, ...]
    cost: int
    balance: int
    prompt: Optional[UpsellPrompt] = None
    denied_key: Optional[ServiceKey] = None

    @property
    def allowed(self) -> bool:
        return self.status == EntitlementStatus.ALLOWED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "service_keys": [k.value for k in self.service_keys],
            "cost": self.cost,
            "balance": self.balance,
            "prompt": self.prompt.value if self.prompt else None,
            "denied_key": self.denied_key.value if self.denied_key else None,
        }


def resolve_plan(plans: Sequence[Plan], plan_id: Optional[str]) -> Plan:
    """Resolve a user's plan; never raises.

    Stale ids fall back to `free`. With no `free` plan either, the result is a
    zero-credit placeholder with no services, so every check fails closed.
    """
    by_id = {plan.id: plan for plan in plans}
    if plan_id and plan_id in by_id:
        return by_id[plan_id]

    if FREE_PLAN_ID in by_id:
        if plan_id and plan_id != FREE_PLAN_ID:
            logger.info(
                "[entitlements] plan not found, falling back to free",
                extra={"event_type": "plan_fallback", "plan_id": plan_id},
            )
        return by_id[FREE_PLAN_ID]

    logger.warning(
        "[entitlements] no free plan in catalog, using closed placeholder",
        extra={"event_type": "plan_placeholder", "plan_id": plan_id},
    )
    return placeholder_plan()


def coerce_service_keys(keys: Iterable[Any]) -> Tuple[ServiceKey, ...]:
    coerced = tuple(k if isinstance(k, ServiceKey) else ServiceKey(k) for k in keys)
    if not coerced:
        raise ValueError("At least one service key is required")
    return coerced


@dataclass(frozen=True)
class EntitlementResolver:
    """Answers entitlement questions for one (plan, balance) snapshot."""

    plan: Plan
    balance: int

    @classmethod
    def for_user(cls, user: UserAccount, plans: Sequence[Plan]) -> "EntitlementResolver":
        return cls(plan=resolve_plan(plans, user.plan), balance=user.credits)

    @property
    def unlimited(self) -> bool:
        return is_unlimited(self.balance)

    def has_access_to_service(self, key: ServiceKey) -> bool:
        if self.unlimited:
            return True
        perm = self.plan.permission(key)
        return perm is not None and perm.enabled

    def get_credits_cost_for_service(self, key: ServiceKey) -> int:
        # Reported even for disabled or unknown services (locked-state display)
        perm = self.plan.permission(key)
        if perm is None or perm.credits_per_use is None:
            return DEFAULT_CREDITS_PER_USE
        return perm.credits_per_use

    def total_cost(self, keys: Iterable[ServiceKey]) -> int:
        return sum(self.get_credits_cost_for_service(k) for k in keys)

    def has_enough_credits(self, key: ServiceKey) -> bool:
        if self.unlimited:
            return True
        return self.balance >= self.get_credits_cost_for_service(key)

    def can_use_service(self, key: ServiceKey) -> bool:
        return self.has_access_to_service(key) and self.has_enough_credits(key)

    def check(self, keys: Iterable[Any]) -> EntitlementCheck:
        """Gate a request for one or more services charged together.

        A generation with an audio add-on asks for both its main service and
        text_to_speech; every key must be accessible and the balance must cover
        the summed cost.
        """
        service_keys = coerce_service_keys(keys)
        cost = self.total_cost(service_keys)

        for key in service_keys:
            if not self.has_access_to_service(key):
                return EntitlementCheck(
                    status=EntitlementStatus.ACCESS_DENIED,
                    service_keys=service_keys,
                    cost=cost,
                    balance=self.balance,
                    prompt=UpsellPrompt.UPGRADE,
                    denied_key=key,
                )

        if not self.unlimited and self.balance < cost:
            return EntitlementCheck(
                status=EntitlementStatus.INSUFFICIENT_BALANCE,
                service_keys=service_keys,
                cost=cost,
                balance=self.balance,
                prompt=UpsellPrompt.BUY_CREDITS,
            )

        return EntitlementCheck(
            status=EntitlementStatus.ALLOWED,
            service_keys=service_keys,
            cost=cost,
            balance=self.balance,
        )

    def summary(self) -> List[Dict[str, Any]]:
        """Per-service view for every known key."""
        rows = []
        for key in ServiceKey:
            perm = self.plan.permission(key)
            rows.append({
                "key": key.value,
                "name": perm.name if perm and perm.name else label_for(key),
                "has_access": self.has_access_to_service(key),
                "cost": self.get_credits_cost_for_service(key),
                "can_use": self.can_use_service(key),
            })
        return rows
