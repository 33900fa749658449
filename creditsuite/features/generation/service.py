"""
creditsuite/features/generation/service.py

Gated generation: check, invoke, then charge.

Order per request:
1. Re-check entitlement against a fresh (plan, balance) snapshot. A denied
   check returns the denied outcome and the backend is never called.
2. Invoke the backend under a bounded timeout. Failures propagate; nothing is
   charged.
3. Debit using the snapshot that authorized the call. A failed debit is logged
   and audited, and the already generated content is still returned uncharged.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from creditsuite.core.config import settings
from creditsuite.core.errors import (
    AppError,
    GenerationTimeoutError,
    InsufficientBalanceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from creditsuite.core.logging import log_event
from creditsuite.features.audit.service import MODULE_CREDITS, record_audit
from creditsuite.features.credits.ledger import debit
from creditsuite.features.entitlements.service import EntitlementCheck, EntitlementResolver
from creditsuite.features.generation.client import GenerationClient, GenerationResult, GenerationSource
from creditsuite.features.guest.service import GuestEntitlement
from creditsuite.features.plans.catalog import PlanCatalog, get_plan_catalog
from creditsuite.features.users.service import UserSession
from creditsuite.models.service import ServiceKey

logger = logging.getLogger("creditsuite.generation")

MAX_PROMPT_LENGTH = 20000
PREMIUM_PLAN_ID = "premium"

# Output is an image prompt or a visual layout, never footer-stamped
_UNSTAMPED_SERVICES = frozenset({
    ServiceKey.IMAGE_GENERATION,
    ServiceKey.CANVA_STRUCTURE,
    ServiceKey.SOCIAL_MEDIA_POSTER,
})
# Output is a full HTML page; the footer goes inside <body>
_HTML_SERVICES = frozenset({
    ServiceKey.LANDINGPAGE_GENERATOR,
    ServiceKey.INSTITUTIONAL_WEBSITE_GENERATOR,
})
_IMAGE_SERVICES = frozenset({ServiceKey.IMAGE_GENERATION, ServiceKey.SOCIAL_MEDIA_POSTER})

_TITLE_MARKERS = re.compile(r"^(\*\*|#+|Título:|Subject:|Headline:)\s*", re.IGNORECASE)


@dataclass(frozen=True)
class GenerationRequest:
    prompt: str
    service_key: ServiceKey
    with_audio: bool = False
    options: Dict[str, Any] = field(default_factory=dict)

    def service_keys(self) -> Tuple[ServiceKey, ...]:
        """Services charged for this request (the audio add-on is billed as text_to_speech)."""
        if self.with_audio and self.service_key != ServiceKey.TEXT_TO_SPEECH:
            return (self.service_key, ServiceKey.TEXT_TO_SPEECH)
        return (self.service_key,)


@dataclass(frozen=True)
class GenerationOutcome:
    check: EntitlementCheck
    text: Optional[str] = None
    title: Optional[str] = None
    image_prompt: Optional[str] = None
    image_dimensions: Optional[Tuple[int, int]] = None
    audio_base64: Optional[str] = None
    sources: List[GenerationSource] = field(default_factory=list)
    charged: bool = False
    cost: int = 0
    balance: Optional[int] = None
    debit_error: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.check.allowed


def extract_title_and_content(text: str) -> Tuple[Optional[str], str]:
    """Split a leading headline line off generated text, when it looks like one."""
    if not text:
        return None, ""
    lines = text.split("\n")
    first = _TITLE_MARKERS.sub("", lines[0].strip())
    if first.endswith("**"):
        first = first[:-2]
    if 5 < len(first) < 100 and "<" not in first:
        return first, "\n".join(lines[1:]).strip()
    return None, text


def image_dimensions(aspect_ratio: Optional[str]) -> Tuple[int, int]:
    base = 1024
    if not aspect_ratio or ":" not in aspect_ratio:
        return base, base
    try:
        w_ratio, h_ratio = (float(part) for part in aspect_ratio.split(":", 1))
    except ValueError:
        return base, base
    if w_ratio <= 0 or h_ratio <= 0:
        return base, base
    if w_ratio > h_ratio:
        return base, round(base * h_ratio / w_ratio)
    if h_ratio > w_ratio:
        return round(base * w_ratio / h_ratio), base
    return base, base


def apply_attribution(text: str, service_key: ServiceKey, *, stamped: bool) -> str:
    """Append the attribution footer for accounts that carry it."""
    if not stamped or not settings.ATTRIBUTION_ENABLED or not text:
        return text
    footer = settings.ATTRIBUTION_TEXT
    if service_key in _HTML_SERVICES:
        block = (
            '<div style="text-align:center; font-size:10px; color:#888; padding:20px;">'
            f"{footer}</div>"
        )
        if "</body>" in text:
            return text.replace("</body>", f"{block}</body>", 1)
        return text + block
    if service_key in _UNSTAMPED_SERVICES:
        return text
    return f"{text}\n\n{footer}"


def _validate(request: GenerationRequest) -> None:
    if not request.prompt or not request.prompt.strip():
        raise ValidationError("Prompt cannot be empty")
    if len(request.prompt) > MAX_PROMPT_LENGTH:
        raise ValidationError(f"Prompt exceeds {MAX_PROMPT_LENGTH} characters")


class GenerationService:
    def __init__(
        self,
        client: GenerationClient,
        *,
        catalog: Optional[PlanCatalog] = None,
        guests: Optional[GuestEntitlement] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.client = client
        self._catalog = catalog
        self.guests = guests
        self.timeout_seconds = timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS

    @property
    def catalog(self) -> PlanCatalog:
        return self._catalog or get_plan_catalog()

    async def _invoke(self, request: GenerationRequest, user_id: Optional[str]) -> GenerationResult:
        options = dict(request.options)
        options["generateAudio"] = request.with_audio
        try:
            return await asyncio.wait_for(
                self.client.invoke(request.prompt, request.service_key.value, user_id, options),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationTimeoutError(
                f"Generation did not complete within {self.timeout_seconds:g}s"
            ) from exc

    def _build_outcome(
        self,
        request: GenerationRequest,
        result: GenerationResult,
        check: EntitlementCheck,
        *,
        stamped: bool,
        charged: bool,
        balance: Optional[int],
        debit_error: Optional[str] = None,
    ) -> GenerationOutcome:
        key = request.service_key
        title = None
        image_prompt = None
        dims = None
        if key in _IMAGE_SERVICES:
            text = result.text
            image_prompt = result.text
            dims = image_dimensions(request.options.get("aspectRatio"))
        elif key in _HTML_SERVICES:
            text = result.text
        else:
            title, text = extract_title_and_content(result.text)

        return GenerationOutcome(
            check=check,
            text=apply_attribution(text, key, stamped=stamped),
            title=title,
            image_prompt=image_prompt,
            image_dimensions=dims,
            audio_base64=result.audio_base64,
            sources=list(result.sources),
            charged=charged,
            cost=check.cost,
            balance=balance,
            debit_error=debit_error,
        )

    def _charge_user(
        self,
        session: UserSession,
        resolver: EntitlementResolver,
        request: GenerationRequest,
        check: EntitlementCheck,
    ) -> Tuple[bool, int, Optional[str]]:
        """Debit after a successful generation; returns (charged, balance, debit_error)."""
        user = session.current_user
        keys = request.service_keys()
        try:
            debited = debit(user, resolver, keys)
        except (PersistenceError, InsufficientBalanceError, NotFoundError) as exc:
            log_event(
                "warning",
                "generation.debit_failed",
                request_id=None,
                user_id=user.user_id,
                service_key=request.service_key.value,
                error_code=exc.code,
                extra={"cost": check.cost},
            )
            record_audit(
                user.user_id,
                "debit_failed",
                MODULE_CREDITS,
                {"service_keys": [k.value for k in keys], "cost": check.cost, "error": exc.code},
                level="error",
            )
            return False, user.credits, exc.code

        if debited.charged:
            session.refresh()
        return debited.charged, debited.new_balance, None

    async def generate_for_user(self, session: UserSession, request: GenerationRequest) -> GenerationOutcome:
        _validate(request)
        keys = request.service_keys()

        user = session.current_user
        plan = await asyncio.to_thread(self.catalog.resolve, user.plan)
        resolver = EntitlementResolver(plan=plan, balance=user.credits)
        check = resolver.check(keys)
        if not check.allowed:
            log_event(
                "info",
                "generation.denied",
                request_id=None,
                user_id=user.user_id,
                service_key=request.service_key.value,
                event_type=check.status.value,
                extra={"cost": check.cost, "balance": check.balance},
            )
            return GenerationOutcome(check=check, cost=check.cost, balance=check.balance)

        result = await self._invoke(request, user.user_id)
        charged, balance, debit_error = await asyncio.to_thread(
            self._charge_user, session, resolver, request, check
        )

        stamped = not user.is_admin and resolver.plan.id != PREMIUM_PLAN_ID
        return self._build_outcome(
            request,
            result,
            check,
            stamped=stamped,
            charged=charged,
            balance=balance,
            debit_error=debit_error,
        )

    async def generate_for_guest(self, guest_id: str, request: GenerationRequest) -> GenerationOutcome:
        if self.guests is None:
            raise AppError("Guest generation is not available", code="guest_disabled", status_code=403)
        _validate(request)
        keys = request.service_keys()

        check = self.guests.check(guest_id, keys)
        if not check.allowed:
            log_event(
                "info",
                "generation.guest_denied",
                request_id=None,
                service_key=request.service_key.value,
                event_type=check.status.value,
                extra={"guest_id": guest_id, "cost": check.cost, "balance": check.balance},
            )
            return GenerationOutcome(check=check, cost=check.cost, balance=check.balance)

        result = await self._invoke(request, None)

        charged = False
        balance = check.balance
        debit_error = None
        try:
            balance = self.guests.consume(guest_id, keys)
            charged = True
        except InsufficientBalanceError as exc:
            debit_error = exc.code
            logger.warning(f"[guest] allowance consumed concurrently for {guest_id}")

        return self._build_outcome(
            request,
            result,
            check,
            stamped=True,
            charged=charged,
            balance=balance,
            debit_error=debit_error,
        )
