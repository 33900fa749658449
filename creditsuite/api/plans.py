"""
Plan catalog routes.

Public: active, cost-synchronized plans.
Admin: full catalog read, versioned save, per-plan edit/delete, cost resync.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from creditsuite.core.admin_auth import AdminActor, require_admin
from creditsuite.core.errors import ValidationError
from creditsuite.features.plans.catalog import get_plan_catalog
from creditsuite.models.plan import Plan

logger = logging.getLogger("creditsuite.api.plans")

router = APIRouter()


class PlansUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plans: List[Plan]
    expected_version: Optional[int] = Field(None, alias="expectedVersion")


def _catalog_payload(plans: List[Plan], version: int, **extra) -> dict:
    return {"plans": [plan.to_store() for plan in plans], "version": version, **extra}


@router.get("/v1/plans")
def list_public_plans():
    catalog = get_plan_catalog()
    return _catalog_payload(catalog.active_plans(), catalog.version)


@router.get("/v1/admin/plans")
def list_all_plans(actor: AdminActor = Depends(require_admin)):
    catalog = get_plan_catalog()
    plans = catalog.load(refresh=True)
    return _catalog_payload(plans, catalog.version, is_default=catalog.is_default)


@router.put("/v1/admin/plans")
def save_all_plans(body: PlansUpdateRequest, actor: AdminActor = Depends(require_admin)):
    catalog = get_plan_catalog()
    saved = catalog.save(body.plans, actor.actor_id, expected_version=body.expected_version)
    logger.info(f"[plans] catalog replaced by {actor.actor_id}")
    return _catalog_payload(saved, catalog.version)


@router.post("/v1/admin/plans/sync-costs")
def sync_plan_costs(actor: AdminActor = Depends(require_admin)):
    catalog = get_plan_catalog()
    saved = catalog.sync_and_save(actor.actor_id)
    return _catalog_payload(saved, catalog.version)


@router.get("/v1/admin/plans/{plan_id}/editable")
def get_editable_plan(plan_id: str, actor: AdminActor = Depends(require_admin)):
    catalog = get_plan_catalog()
    return {"plan": catalog.editable_plan(plan_id).to_store(), "version": catalog.version}


@router.put("/v1/admin/plans/{plan_id}")
def upsert_plan(
    plan_id: str,
    plan: Plan,
    expected_version: Optional[int] = Query(None),
    actor: AdminActor = Depends(require_admin),
):
    if plan.id != plan_id:
        raise ValidationError("Plan id in body does not match the URL")
    catalog = get_plan_catalog()
    saved = catalog.upsert_plan(plan, actor.actor_id, expected_version=expected_version)
    return _catalog_payload(saved, catalog.version)


@router.delete("/v1/admin/plans/{plan_id}")
def delete_plan(
    plan_id: str,
    expected_version: Optional[int] = Query(None),
    actor: AdminActor = Depends(require_admin),
):
    catalog = get_plan_catalog()
    saved = catalog.delete_plan(plan_id, actor.actor_id, expected_version=expected_version)
    return _catalog_payload(saved, catalog.version)
