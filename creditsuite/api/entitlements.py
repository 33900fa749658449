"""
Entitlement read routes.

Used by clients to render locked/unlocked states and costs. These are advisory:
generation re-checks server-side right before calling the backend.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from creditsuite.core.auth import get_optional_user
from creditsuite.features.entitlements.service import EntitlementResolver
from creditsuite.features.guest.service import get_guest_entitlement
from creditsuite.features.plans.catalog import get_plan_catalog
from creditsuite.models.service import ServiceKey, label_for
from creditsuite.models.user import UserAccount

router = APIRouter()


class EntitlementCheckRequest(BaseModel):
    service_key: ServiceKey
    with_audio: bool = False


def _keys(body: EntitlementCheckRequest) -> List[ServiceKey]:
    keys = [body.service_key]
    if body.with_audio and body.service_key != ServiceKey.TEXT_TO_SPEECH:
        keys.append(ServiceKey.TEXT_TO_SPEECH)
    return keys


def _guest_summary(guest_id: str) -> Dict[str, Any]:
    guests = get_guest_entitlement()
    balance = guests.balance(guest_id)
    services = []
    for key in ServiceKey:
        check = guests.check(guest_id, [key])
        services.append({
            "key": key.value,
            "name": label_for(key),
            "has_access": check.denied_key is None,
            "cost": check.cost,
            "can_use": check.allowed,
        })
    return {"subject": "guest", "guest_id": guest_id, "balance": balance, "unlimited": False, "services": services}


@router.get("/v1/entitlements/me")
def my_entitlements(request: Request, user: Optional[UserAccount] = Depends(get_optional_user)):
    if user is None:
        return _guest_summary(request.state.guest_id)

    plan = get_plan_catalog().resolve(user.plan)
    resolver = EntitlementResolver(plan=plan, balance=user.credits)
    return {
        "subject": "user",
        "user_id": user.user_id,
        "plan": {"id": plan.id, "name": plan.name, "credits": plan.credits},
        "balance": user.credits,
        "unlimited": resolver.unlimited,
        "services": resolver.summary(),
    }


@router.post("/v1/entitlements/check")
def check_entitlement(
    body: EntitlementCheckRequest,
    request: Request,
    user: Optional[UserAccount] = Depends(get_optional_user),
):
    keys = _keys(body)
    if user is None:
        check = get_guest_entitlement().check(request.state.guest_id, keys)
    else:
        resolver = EntitlementResolver(plan=get_plan_catalog().resolve(user.plan), balance=user.credits)
        check = resolver.check(keys)
    return check.to_dict()
