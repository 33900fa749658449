"""
creditsuite/features/plans/catalog.py

Plan catalog: load, validate, cost-sync and persist the plan list.

Handles:
- Code-defined default plans (free, basic, standard, premium)
- Reading the catalog blob from the config store, falling back to defaults
- Validated, versioned saves with an audit entry
- Admin helpers (upsert, delete, editable view, cost resync)

The whole catalog is stored as one JSON list under PLANS_CONFIG_KEY. Defaults
are served when nothing was stored but are never written back implicitly; an
admin save makes them durable.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from creditsuite.core.config import settings
from creditsuite.core.errors import ConfigUnavailableError, NotFoundError, PlanValidationError
from creditsuite.features.audit.service import MODULE_PLANS, record_audit
from creditsuite.features.config_store.service import ConfigStore, get_config_store
from creditsuite.features.entitlements.service import FREE_PLAN_ID, resolve_plan
from creditsuite.features.plans.sync import merge_services_for_editing, sync_costs
from creditsuite.models.plan import UNLIMITED_CREDITS, Plan, ServicePermission
from creditsuite.models.service import ServiceKey, label_for

logger = logging.getLogger("creditsuite.plans")


def _services(*keys: ServiceKey) -> List[Dict[str, Any]]:
    return [{"key": key, "name": label_for(key), "enabled": True} for key in keys]


_COMMON_SERVICES = (
    ServiceKey.NEWS_GENERATOR,
    ServiceKey.COPY_GENERATOR,
    ServiceKey.TEXT_TO_SPEECH,
    ServiceKey.PROMPT_GENERATOR,
)

# Default plan configurations (costs are filled in by sync_costs)
DEFAULT_PLANS: Dict[str, Dict[str, Any]] = {
    "free": {
        "name": "Free",
        "credits": 3,
        "price": 0,
        "express_credit_price": 15.00,
        "color": "gray",
        "services": _services(*_COMMON_SERVICES),
    },
    "basic": {
        "name": "Básico",
        "credits": 25,
        "price": 49.99,
        "express_credit_price": 9.00,
        "color": "blue",
        "services": _services(*_COMMON_SERVICES),
    },
    "standard": {
        "name": "Standard",
        "credits": 50,
        "price": 99.99,
        "express_credit_price": 7.00,
        "color": "green",
        "services": _services(
            *_COMMON_SERVICES,
            ServiceKey.CANVA_STRUCTURE,
            ServiceKey.IMAGE_GENERATION,
            ServiceKey.INSTITUTIONAL_WEBSITE_GENERATOR,
        ),
    },
    "premium": {
        "name": "Premium",
        "credits": 100,
        "price": 199.00,
        "express_credit_price": 5.00,
        "color": "purple",
        "services": _services(
            *_COMMON_SERVICES,
            ServiceKey.CANVA_STRUCTURE,
            ServiceKey.IMAGE_GENERATION,
            ServiceKey.LANDINGPAGE_GENERATOR,
            ServiceKey.INSTITUTIONAL_WEBSITE_GENERATOR,
        ),
    },
}


def default_plans() -> List[Plan]:
    return [
        Plan(id=plan_id, interval="month", is_active=True, **config)
        for plan_id, config in DEFAULT_PLANS.items()
    ]


def validate_plans(plans: List[Plan]) -> None:
    """Reject a catalog before persistence. Raises PlanValidationError naming the field."""
    seen_ids = set()
    for index, plan in enumerate(plans):
        where = f"plans[{index}]"
        if not plan.id or not plan.id.strip():
            raise PlanValidationError("Plan id is required", field=f"{where}.id")
        if plan.id in seen_ids:
            raise PlanValidationError(f"Duplicate plan id '{plan.id}'", field=f"{where}.id")
        seen_ids.add(plan.id)
        if not plan.name or not plan.name.strip():
            raise PlanValidationError(f"Plan '{plan.id}' needs a name", field=f"{where}.name")
        if plan.credits < 0 and plan.credits != UNLIMITED_CREDITS:
            raise PlanValidationError(
                f"Plan '{plan.id}' credits must be >= 0 or -1 (unlimited)", field=f"{where}.credits"
            )
        if plan.price < 0:
            raise PlanValidationError(f"Plan '{plan.id}' price cannot be negative", field=f"{where}.price")
        if plan.express_credit_price < 0:
            raise PlanValidationError(
                f"Plan '{plan.id}' express credit price cannot be negative",
                field=f"{where}.expressCreditPrice",
            )

        seen_keys = set()
        for s_index, perm in enumerate(plan.services):
            s_where = f"{where}.services[{s_index}]"
            if perm.key in seen_keys:
                raise PlanValidationError(
                    f"Plan '{plan.id}' lists service '{perm.key.value}' twice", field=f"{s_where}.key"
                )
            seen_keys.add(perm.key)
            if perm.credits_per_use is None or perm.credits_per_use < 0:
                raise PlanValidationError(
                    f"Plan '{plan.id}' service '{perm.key.value}' cost must be >= 0",
                    field=f"{s_where}.creditsPerUse",
                )

    if FREE_PLAN_ID not in seen_ids:
        raise PlanValidationError("The catalog must keep a 'free' plan", field="plans")


def parse_stored_plans(raw: Any) -> List[Plan]:
    """Parse the stored blob. Unknown legacy service keys are dropped with a warning."""
    if not isinstance(raw, list):
        raise ConfigUnavailableError("Stored plan catalog is not a list")

    known = {key.value for key in ServiceKey}
    plans: List[Plan] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ConfigUnavailableError("Stored plan entry is not an object")
        services = []
        for perm in item.get("services") or []:
            key = perm.get("key") if isinstance(perm, dict) else None
            if key not in known:
                logger.warning(
                    "[plans] dropping unknown service key from stored plan",
                    extra={"event_type": "unknown_service_key", "plan_id": item.get("id"), "service_key": key},
                )
                continue
            services.append(perm)
        try:
            plans.append(Plan.model_validate({**item, "services": services}))
        except PydanticValidationError as exc:
            raise ConfigUnavailableError(f"Stored plan '{item.get('id')}' is malformed") from exc
    return plans


class PlanCatalog:
    """Plan repository: cached, cost-synchronized view over the config store.

    `version` is the store version the cache was read at; pass it back as
    `expected_version` to refuse saves that would overwrite a newer catalog.
    """

    def __init__(
        self,
        store: Optional[ConfigStore] = None,
        *,
        key: Optional[str] = None,
        cost_table: Optional[Mapping[ServiceKey, int]] = None,
    ):
        self._store = store
        self._key = key or settings.PLANS_CONFIG_KEY
        self._cost_table = cost_table
        self._lock = threading.RLock()
        self._cache: Optional[List[Plan]] = None
        self._version = 0
        self._is_default = False
        self._resolved: Dict[Optional[str], Plan] = {}

    @property
    def store(self) -> ConfigStore:
        return self._store or get_config_store()

    @property
    def version(self) -> int:
        return self._version

    @property
    def is_default(self) -> bool:
        """True when the cached catalog is the code default (never saved)."""
        return self._is_default

    def _sync(self, plans: List[Plan]) -> List[Plan]:
        return sync_costs(plans, self._cost_table)

    def load(self, refresh: bool = False) -> List[Plan]:
        with self._lock:
            if self._cache is not None and not refresh:
                return list(self._cache)

            try:
                record = self.store.get(self._key)
                if record is None or not record.value:
                    plans, version, is_default = default_plans(), (record.version if record else 0), True
                else:
                    plans, version, is_default = parse_stored_plans(record.value), record.version, False
            except ConfigUnavailableError as exc:
                if self._cache is not None:
                    logger.warning(f"[plans] catalog refresh failed, keeping cached copy: {exc.message}")
                    return list(self._cache)
                logger.warning(f"[plans] catalog unavailable, serving defaults: {exc.message}")
                return self._sync(default_plans())

            self._cache = self._sync(plans)
            self._version = version
            self._is_default = is_default
            self._resolved.clear()
            return list(self._cache)

    def save(self, plans: List[Plan], actor_id: Optional[str], expected_version: Optional[int] = None) -> List[Plan]:
        """Validate, sync and persist the full catalog. Cache changes only on success."""
        validate_plans(plans)
        synced = self._sync(plans)
        payload = [plan.to_store() for plan in synced]

        with self._lock:
            new_version = self.store.put(self._key, payload, actor_id, expected_version)
            self._cache = synced
            self._version = new_version
            self._is_default = False
            self._resolved.clear()

        record_audit(
            actor_id,
            "update_plans_config",
            MODULE_PLANS,
            {"plan_count": len(synced), "version": new_version},
        )
        logger.info(f"[plans] catalog saved (version={new_version}, plans={len(synced)})")
        return list(synced)

    def resolve(self, plan_id: Optional[str]) -> Plan:
        """Memoized resolve_plan against the current catalog."""
        plans = self.load()
        with self._lock:
            plan = self._resolved.get(plan_id)
            if plan is None:
                plan = resolve_plan(plans, plan_id)
                self._resolved[plan_id] = plan
            return plan

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        for plan in self.load():
            if plan.id == plan_id:
                return plan
        return None

    def active_plans(self) -> List[Plan]:
        return [plan for plan in self.load() if plan.is_active]

    def editable_plan(self, plan_id: str) -> Plan:
        plan = self.get_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan '{plan_id}' not found")
        return merge_services_for_editing(plan)

    def upsert_plan(self, plan: Plan, actor_id: Optional[str], expected_version: Optional[int] = None) -> List[Plan]:
        plans = self.load(refresh=True)
        version = self._version if expected_version is None else expected_version
        replaced = False
        updated: List[Plan] = []
        for existing in plans:
            if existing.id == plan.id:
                updated.append(plan)
                replaced = True
            else:
                updated.append(existing)
        if not replaced:
            updated.append(plan)
        return self.save(updated, actor_id, expected_version=version)

    def delete_plan(self, plan_id: str, actor_id: Optional[str], expected_version: Optional[int] = None) -> List[Plan]:
        if plan_id == FREE_PLAN_ID:
            raise PlanValidationError("The 'free' plan cannot be deleted", field="id")
        plans = self.load(refresh=True)
        version = self._version if expected_version is None else expected_version
        remaining = [plan for plan in plans if plan.id != plan_id]
        if len(remaining) == len(plans):
            raise NotFoundError(f"Plan '{plan_id}' not found")
        return self.save(remaining, actor_id, expected_version=version)

    def sync_and_save(self, actor_id: Optional[str]) -> List[Plan]:
        """Reload from the store, apply the current cost table and persist."""
        plans = self.load(refresh=True)
        return self.save(plans, actor_id, expected_version=self._version)

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
            self._version = 0
            self._is_default = False
            self._resolved.clear()


def build_permission(key: ServiceKey, enabled: bool = True, credits_per_use: Optional[int] = None) -> ServicePermission:
    values: Dict[str, Any] = {"key": key, "name": label_for(key), "enabled": enabled}
    if credits_per_use is not None:
        values["credits_per_use"] = credits_per_use
    return ServicePermission(**values)


_catalog: Optional[PlanCatalog] = None


def get_plan_catalog() -> PlanCatalog:
    global _catalog
    if _catalog is None:
        _catalog = PlanCatalog()
    return _catalog


def reset_plan_catalog(catalog: Optional[PlanCatalog] = None) -> None:
    global _catalog
    _catalog = catalog
