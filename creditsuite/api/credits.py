"""
Credit balance routes: the caller's ledger, admin plan assignment and grants.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from creditsuite.core.admin_auth import AdminActor, require_admin
from creditsuite.core.auth import get_current_user
from creditsuite.features.credits.ledger import grant_credits, recent_entries
from creditsuite.features.users.service import assign_plan
from creditsuite.models.user import UserAccount

router = APIRouter()


class AssignPlanRequest(BaseModel):
    plan_id: str
    reset_credits: bool = True


class GrantCreditsRequest(BaseModel):
    amount: int = Field(..., gt=0)
    reason: Optional[str] = Field(None, max_length=200)


def _account(user: UserAccount) -> dict:
    return {
        "user_id": user.user_id,
        "plan": user.plan,
        "credits": user.credits,
        "unlimited": user.has_unlimited_credits,
        "role": user.role,
    }


@router.get("/v1/credits/ledger")
def my_ledger(
    limit: int = Query(20, ge=1, le=100),
    user: UserAccount = Depends(get_current_user),
):
    entries = recent_entries(user.user_id, limit)
    return {
        "balance": user.credits,
        "entries": [entry.model_dump(mode="json") for entry in entries],
    }


@router.post("/v1/admin/users/{user_id}/plan")
def admin_assign_plan(user_id: str, body: AssignPlanRequest, actor: AdminActor = Depends(require_admin)):
    user = assign_plan(user_id, body.plan_id, actor.actor_id, reset_credits=body.reset_credits)
    return _account(user)


@router.post("/v1/admin/users/{user_id}/credits")
def admin_grant_credits(user_id: str, body: GrantCreditsRequest, actor: AdminActor = Depends(require_admin)):
    user = grant_credits(user_id, body.amount, actor.actor_id, reason=body.reason)
    return _account(user)
