"""
Gated content generation route.

Authenticated callers are charged against their plan; anonymous callers draw
from the guest allowance tied to their X-Guest-Id.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from creditsuite.core.auth import get_optional_user
from creditsuite.core.errors import AccessDeniedError, InsufficientBalanceError
from creditsuite.features.entitlements.service import EntitlementStatus
from creditsuite.features.generation.client import HttpGenerationClient
from creditsuite.features.generation.service import GenerationOutcome, GenerationRequest, GenerationService
from creditsuite.features.guest.service import get_guest_entitlement
from creditsuite.features.users.service import UserSession
from creditsuite.models.service import ServiceKey, label_for
from creditsuite.models.user import UserAccount

logger = logging.getLogger("creditsuite.api.generation")

router = APIRouter()


class GenerateBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    service_key: ServiceKey = Field(alias="serviceKey")
    with_audio: bool = Field(False, alias="withAudio")
    options: Dict[str, Any] = Field(default_factory=dict)


def get_generation_service() -> GenerationService:
    return GenerationService(HttpGenerationClient(), guests=get_guest_entitlement())


def _raise_denied(outcome: GenerationOutcome) -> None:
    check = outcome.check
    details = check.to_dict()
    if check.status == EntitlementStatus.ACCESS_DENIED:
        denied = check.denied_key or check.service_keys[0]
        raise AccessDeniedError(f"'{label_for(denied)}' is not available on your plan", details=details)
    raise InsufficientBalanceError(
        f"This generation costs {check.cost} credits; balance is {check.balance}",
        details=details,
    )


def _render(outcome: GenerationOutcome, subject: str) -> Dict[str, Any]:
    return {
        "subject": subject,
        "text": outcome.text,
        "title": outcome.title,
        "image_prompt": outcome.image_prompt,
        "image_dimensions": list(outcome.image_dimensions) if outcome.image_dimensions else None,
        "audio_base64": outcome.audio_base64,
        "sources": [{"uri": s.uri, "title": s.title} for s in outcome.sources],
        "cost": outcome.cost,
        "charged": outcome.charged,
        "balance": outcome.balance,
        "debit_error": outcome.debit_error,
    }


@router.post("/v1/generate")
async def generate(
    body: GenerateBody,
    request: Request,
    user: Optional[UserAccount] = Depends(get_optional_user),
    service: GenerationService = Depends(get_generation_service),
):
    gen_request = GenerationRequest(
        prompt=body.prompt,
        service_key=body.service_key,
        with_audio=body.with_audio,
        options=body.options,
    )

    if user is None:
        outcome = await service.generate_for_guest(request.state.guest_id, gen_request)
        subject = "guest"
    else:
        outcome = await service.generate_for_user(UserSession(user), gen_request)
        subject = "user"

    if not outcome.allowed:
        _raise_denied(outcome)
    return _render(outcome, subject)
