"""
Guest entitlement shadow.

Anonymous visitors get a small fixed allowance and a fixed allowlist of text
services. Both are constants, so a misconfigured `free` plan cannot widen guest
access. Counters are low-assurance: a guest who discards their id starts over.
GuestEntitlement is the seam for swapping in a server-side limiter later.
"""

import logging
import threading
from collections import OrderedDict
from typing import FrozenSet, Iterable, Mapping, Optional, Protocol

from creditsuite.core.config import settings
from creditsuite.core.errors import InsufficientBalanceError
from creditsuite.features.entitlements.service import (
    EntitlementCheck,
    EntitlementStatus,
    UpsellPrompt,
    coerce_service_keys,
)
from creditsuite.features.plans.sync import TASK_COSTS, code_cost
from creditsuite.models.service import ServiceKey

logger = logging.getLogger("creditsuite.guest")

GUEST_ALLOWED_SERVICES: FrozenSet[ServiceKey] = frozenset({
    ServiceKey.NEWS_GENERATOR,
    ServiceKey.COPY_GENERATOR,
    ServiceKey.PROMPT_GENERATOR,
})


class GuestCounterStore(Protocol):
    def get(self, guest_id: str) -> Optional[int]:
        ...

    def decrement_if_at_least(self, guest_id: str, amount: int, initial: int) -> Optional[int]:
        """Atomically spend `amount`, seeding an unseen id with `initial` first."""
        ...


class InMemoryGuestCounterStore:
    """Process-local counters keyed by guest id.

    Only guests who actually spent something get an entry. The map is capped at
    `max_entries`; the least recently used id is evicted and starts over with a
    fresh allowance if it comes back.
    """

    def __init__(self, max_entries: int = 10_000):
        self._counters: "OrderedDict[str, int]" = OrderedDict()
        self._max_entries = max_entries
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._counters)

    def get(self, guest_id: str) -> Optional[int]:
        with self._lock:
            return self._counters.get(guest_id)

    def decrement_if_at_least(self, guest_id: str, amount: int, initial: int) -> Optional[int]:
        with self._lock:
            current = self._counters.get(guest_id, initial)
            if current < amount:
                return None
            self._counters[guest_id] = current - amount
            self._counters.move_to_end(guest_id)
            while len(self._counters) > self._max_entries:
                self._counters.popitem(last=False)
            return current - amount


class GuestEntitlement(Protocol):
    def balance(self, guest_id: str) -> int:
        ...

    def check(self, guest_id: str, keys: Iterable[ServiceKey]) -> EntitlementCheck:
        ...

    def consume(self, guest_id: str, keys: Iterable[ServiceKey]) -> int:
        ...


class LocalGuestEntitlement:
    """Counter-based guest allowance. Unseen ids read as the full allowance."""

    def __init__(
        self,
        store: Optional[GuestCounterStore] = None,
        *,
        allowance: Optional[int] = None,
        allowlist: FrozenSet[ServiceKey] = GUEST_ALLOWED_SERVICES,
        cost_table: Mapping[ServiceKey, int] = TASK_COSTS,
    ):
        self._store = store or InMemoryGuestCounterStore()
        self._allowance = settings.GUEST_FREE_CREDITS if allowance is None else allowance
        self._allowlist = allowlist
        self._cost_table = cost_table

    def balance(self, guest_id: str) -> int:
        remaining = self._store.get(guest_id)
        return self._allowance if remaining is None else remaining

    def cost(self, key: ServiceKey) -> int:
        return code_cost(key, self._cost_table)

    def can_use_service(self, guest_id: str, key: ServiceKey) -> bool:
        return self.check(guest_id, [key]).allowed

    def check(self, guest_id: str, keys: Iterable[ServiceKey]) -> EntitlementCheck:
        service_keys = coerce_service_keys(keys)
        balance = self.balance(guest_id)
        cost = sum(self.cost(k) for k in service_keys)

        for key in service_keys:
            if key not in self._allowlist:
                return EntitlementCheck(
                    status=EntitlementStatus.ACCESS_DENIED,
                    service_keys=service_keys,
                    cost=cost,
                    balance=balance,
                    prompt=UpsellPrompt.SIGNUP,
                    denied_key=key,
                )

        if balance < cost:
            return EntitlementCheck(
                status=EntitlementStatus.INSUFFICIENT_BALANCE,
                service_keys=service_keys,
                cost=cost,
                balance=balance,
                prompt=UpsellPrompt.SIGNUP,
            )

        return EntitlementCheck(
            status=EntitlementStatus.ALLOWED,
            service_keys=service_keys,
            cost=cost,
            balance=balance,
        )

    def consume(self, guest_id: str, keys: Iterable[ServiceKey]) -> int:
        """Decrement the guest counter after a successful generation."""
        service_keys = coerce_service_keys(keys)
        cost = sum(self.cost(k) for k in service_keys)
        remaining = self._store.decrement_if_at_least(guest_id, cost, self._allowance)
        if remaining is None:
            raise InsufficientBalanceError("Guest allowance exhausted", code="concurrent_debit")
        logger.info(
            f"[guest] consumed {cost} (remaining={remaining})",
            extra={"event_type": "guest_debit", "service_key": service_keys[0].value},
        )
        return remaining


_guest_entitlement: Optional[LocalGuestEntitlement] = None


def get_guest_entitlement() -> LocalGuestEntitlement:
    global _guest_entitlement
    if _guest_entitlement is None:
        _guest_entitlement = LocalGuestEntitlement()
    return _guest_entitlement


def reset_guest_entitlement(entitlement: Optional[LocalGuestEntitlement] = None) -> None:
    global _guest_entitlement
    _guest_entitlement = entitlement
