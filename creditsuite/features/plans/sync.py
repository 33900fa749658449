"""
Cost synchronization.

Pricing ships in code: TASK_COSTS is authoritative for every key it lists and
overrides whatever a stored plan says. Keys absent from the table keep their
stored cost (or 1 when none was stored). The override is total, so applying
sync_costs twice gives the same plans as applying it once.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from creditsuite.models.plan import DEFAULT_CREDITS_PER_USE, Plan, ServicePermission
from creditsuite.models.service import ServiceKey, label_for

TASK_COSTS: Dict[ServiceKey, int] = {
    ServiceKey.NEWS_GENERATOR: 1,
    ServiceKey.TEXT_TO_SPEECH: 2,
    ServiceKey.COPY_GENERATOR: 1,
    ServiceKey.PROMPT_GENERATOR: 1,
    ServiceKey.CANVA_STRUCTURE: 3,
    ServiceKey.LANDINGPAGE_GENERATOR: 15,
    ServiceKey.INSTITUTIONAL_WEBSITE_GENERATOR: 25,
    ServiceKey.IMAGE_GENERATION: 5,
}


def code_cost(key: ServiceKey, cost_table: Optional[Mapping[ServiceKey, int]] = None) -> int:
    """Cost straight from the code table, 1 for unlisted keys."""
    table = TASK_COSTS if cost_table is None else cost_table
    return table.get(key, DEFAULT_CREDITS_PER_USE)


def _sync_permission(perm: ServicePermission, table: Mapping[ServiceKey, int]) -> ServicePermission:
    cost = table.get(perm.key)
    if cost is None:
        cost = perm.credits_per_use if perm.credits_per_use is not None else DEFAULT_CREDITS_PER_USE
    name = perm.name or label_for(perm.key)
    if cost == perm.credits_per_use and name == perm.name:
        return perm
    return perm.model_copy(update={"credits_per_use": cost, "name": name})


def sync_costs(plans: Iterable[Plan], cost_table: Optional[Mapping[ServiceKey, int]] = None) -> List[Plan]:
    """Return plans whose per-service costs match the code cost table."""
    table = TASK_COSTS if cost_table is None else cost_table
    synced: List[Plan] = []
    for plan in plans:
        services = [_sync_permission(perm, table) for perm in plan.services]
        synced.append(plan.model_copy(update={"services": services}))
    return synced


def merge_services_for_editing(plan: Plan) -> Plan:
    """Expand a plan to exactly one permission per known service key.

    Keys the plan never stored are synthesized disabled at cost 1 so an editor
    can switch them on. Order follows ServiceKey declaration order.
    """
    existing: Dict[ServiceKey, ServicePermission] = {}
    for perm in plan.services:
        existing.setdefault(perm.key, perm)

    merged = [
        existing.get(key)
        or ServicePermission(key=key, name=label_for(key), enabled=False, credits_per_use=DEFAULT_CREDITS_PER_USE)
        for key in ServiceKey
    ]
    return plan.model_copy(update={"services": merged})
