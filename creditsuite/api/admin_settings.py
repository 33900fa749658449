"""
Admin settings routes: payment gateways, credit packages, AI platforms.

Secrets are masked on the way out; a masked value sent back keeps the stored one.
"""

from typing import Dict, List

from fastapi import APIRouter, Depends

from creditsuite.core.admin_auth import AdminActor, require_admin
from creditsuite.features.settings.service import (
    get_multi_ai_settings,
    get_payment_settings,
    mask_multi_ai_settings,
    mask_payment_settings,
    save_credit_packages,
    save_gateway_settings,
    update_multi_ai_settings,
)
from creditsuite.models.settings import CreditPackage, GatewayConfig, MultiAISettings

router = APIRouter(prefix="/v1/admin/settings", tags=["admin-settings"])


@router.get("/payments")
def read_payment_settings(actor: AdminActor = Depends(require_admin)):
    return mask_payment_settings(get_payment_settings())


@router.put("/payments/gateways")
def write_gateways(gateways: Dict[str, GatewayConfig], actor: AdminActor = Depends(require_admin)):
    return mask_payment_settings(save_gateway_settings(gateways, actor.actor_id))


@router.put("/payments/packages")
def write_packages(packages: List[CreditPackage], actor: AdminActor = Depends(require_admin)):
    return mask_payment_settings(save_credit_packages(packages, actor.actor_id))


@router.get("/multi-ai")
def read_multi_ai(actor: AdminActor = Depends(require_admin)):
    return mask_multi_ai_settings(get_multi_ai_settings())


@router.put("/multi-ai")
def write_multi_ai(body: MultiAISettings, actor: AdminActor = Depends(require_admin)):
    return mask_multi_ai_settings(update_multi_ai_settings(body, actor.actor_id))
