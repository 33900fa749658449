"""
Tests for the gated generation flow: check, invoke, then charge.
"""
import asyncio
import threading

import pytest

from creditsuite.core.config import settings
from creditsuite.core.errors import GenerationFailureError, GenerationTimeoutError, ValidationError
from creditsuite.features.audit.service import list_audit_entries
from creditsuite.features.credits.ledger import recent_entries
from creditsuite.features.entitlements.service import EntitlementStatus
from creditsuite.features.generation import service as generation_service
from creditsuite.features.generation.service import (
    GenerationRequest,
    GenerationService,
    apply_attribution,
    extract_title_and_content,
    image_dimensions,
)
from creditsuite.features.guest.service import LocalGuestEntitlement
from creditsuite.features.users.service import UserSession, get_user
from creditsuite.models.service import ServiceKey


def _request(key=ServiceKey.NEWS_GENERATOR, **kwargs):
    return GenerationRequest(prompt=kwargs.pop("prompt", "Escreva uma notícia"), service_key=key, **kwargs)


@pytest.mark.asyncio
async def test_allowed_generation_is_charged(make_user, fake_client):
    user = make_user("gen-1", plan="basic", credits=10)
    session = UserSession(user)
    outcome = await GenerationService(fake_client).generate_for_user(session, _request())

    assert outcome.allowed
    assert outcome.charged is True
    assert outcome.cost == 1
    assert outcome.balance == 9
    assert session.current_user.credits == 9
    assert outcome.title == "Manchete de teste"
    assert fake_client.calls[0]["service_key"] == "news_generator"
    assert fake_client.calls[0]["user_id"] == "gen-1"


@pytest.mark.asyncio
async def test_denied_access_never_calls_backend(make_user, fake_client):
    user = make_user("gen-2", plan="basic", credits=100)
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(ServiceKey.LANDINGPAGE_GENERATOR)
    )
    assert outcome.check.status == EntitlementStatus.ACCESS_DENIED
    assert outcome.charged is False
    assert fake_client.calls == []
    assert get_user("gen-2").credits == 100


@pytest.mark.asyncio
async def test_insufficient_balance_never_calls_backend(make_user, fake_client):
    user = make_user("gen-3", plan="standard", credits=4)
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(ServiceKey.IMAGE_GENERATION)
    )
    assert outcome.check.status == EntitlementStatus.INSUFFICIENT_BALANCE
    assert outcome.cost == 5
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_free_user_spends_three_credits_then_is_refused(make_user, fake_client):
    user = make_user("gen-free", plan="free", credits=3)
    session = UserSession(user)
    service = GenerationService(fake_client)

    for expected_balance in (2, 1, 0):
        outcome = await service.generate_for_user(session, _request())
        assert outcome.allowed
        assert outcome.charged is True
        assert outcome.cost == 1
        assert outcome.balance == expected_balance
        assert session.current_user.credits == expected_balance

    fourth = await service.generate_for_user(session, _request())
    assert fourth.check.status == EntitlementStatus.INSUFFICIENT_BALANCE
    assert fourth.charged is False
    assert len(fake_client.calls) == 3
    assert get_user("gen-free").credits == 0
    assert len(recent_entries("gen-free")) == 3


@pytest.mark.asyncio
async def test_debit_runs_off_the_event_loop_thread(make_user, fake_client, monkeypatch):
    loop_thread = threading.get_ident()
    debit_threads = []
    real_debit = generation_service.debit

    def tracking_debit(*args, **kwargs):
        debit_threads.append(threading.get_ident())
        return real_debit(*args, **kwargs)

    monkeypatch.setattr(generation_service, "debit", tracking_debit)
    user = make_user("gen-thread", plan="basic", credits=5)
    outcome = await GenerationService(fake_client).generate_for_user(UserSession(user), _request())

    assert outcome.charged is True
    assert debit_threads and debit_threads[0] != loop_thread


@pytest.mark.asyncio
async def test_audio_add_on_is_charged_together(make_user, fake_client):
    user = make_user("gen-4", plan="basic", credits=3)
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(with_audio=True)
    )
    assert outcome.charged
    assert outcome.cost == 3
    assert outcome.balance == 0
    assert fake_client.calls[0]["options"]["generateAudio"] is True


@pytest.mark.asyncio
async def test_backend_failure_is_not_charged(make_user, make_client):
    client = make_client(error=GenerationFailureError("upstream 500"))
    user = make_user("gen-5", plan="basic", credits=5)
    with pytest.raises(GenerationFailureError):
        await GenerationService(client).generate_for_user(UserSession(user), _request())
    assert get_user("gen-5").credits == 5
    assert recent_entries("gen-5") == []


@pytest.mark.asyncio
async def test_backend_timeout_is_not_charged(make_user, make_client):
    client = make_client(delay=0.5)
    user = make_user("gen-6", plan="basic", credits=5)
    service = GenerationService(client, timeout_seconds=0.01)
    with pytest.raises(GenerationTimeoutError):
        await service.generate_for_user(UserSession(user), _request())
    assert get_user("gen-6").credits == 5


@pytest.mark.asyncio
async def test_concurrent_debit_returns_content_uncharged(make_user, fake_client):
    user = make_user("gen-7", plan="basic", credits=1)
    stale = UserSession(user)
    make_user("gen-7", plan="basic", credits=0)

    outcome = await GenerationService(fake_client).generate_for_user(stale, _request())
    assert outcome.allowed
    assert outcome.text
    assert outcome.charged is False
    assert outcome.debit_error == "concurrent_debit"
    assert get_user("gen-7").credits == 0

    audit = list_audit_entries(action="debit_failed")
    assert audit[0]["level"] == "error"
    assert audit[0]["actor_id"] == "gen-7"


@pytest.mark.asyncio
async def test_two_requests_on_last_credit_charge_once(make_user, make_client):
    client = make_client(delay=0.01)
    user = make_user("gen-8", plan="basic", credits=1)
    service = GenerationService(client)

    first, second = await asyncio.gather(
        service.generate_for_user(UserSession(user), _request()),
        service.generate_for_user(UserSession(user), _request()),
    )
    assert sorted([first.charged, second.charged]) == [False, True]
    assert get_user("gen-8").credits == 0
    assert len(recent_entries("gen-8")) == 1


@pytest.mark.asyncio
async def test_unlimited_account_is_not_charged_or_stamped(make_user, fake_client):
    user = make_user("gen-9", plan="free", credits=-1, role="admin")
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(ServiceKey.COPY_GENERATOR)
    )
    assert outcome.charged is False
    assert outcome.balance == -1
    assert settings.ATTRIBUTION_TEXT not in outcome.text


@pytest.mark.asyncio
async def test_non_premium_output_is_stamped(make_user, fake_client):
    user = make_user("gen-10", plan="basic", credits=5)
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(ServiceKey.COPY_GENERATOR)
    )
    assert outcome.text.endswith(settings.ATTRIBUTION_TEXT)


@pytest.mark.asyncio
async def test_premium_output_is_not_stamped(make_user, fake_client):
    user = make_user("gen-11", plan="premium", credits=50)
    outcome = await GenerationService(fake_client).generate_for_user(
        UserSession(user), _request(ServiceKey.COPY_GENERATOR)
    )
    assert settings.ATTRIBUTION_TEXT not in outcome.text


@pytest.mark.asyncio
async def test_image_generation_returns_prompt_and_dimensions(make_user, make_client):
    client = make_client(text="A red fox in the snow, cinematic light")
    user = make_user("gen-12", plan="standard", credits=10)
    outcome = await GenerationService(client).generate_for_user(
        UserSession(user), _request(ServiceKey.IMAGE_GENERATION, options={"aspectRatio": "16:9"})
    )
    assert outcome.image_prompt == "A red fox in the snow, cinematic light"
    assert outcome.image_dimensions == (1024, 576)
    assert outcome.title is None
    assert outcome.balance == 5


@pytest.mark.asyncio
async def test_empty_prompt_rejected_before_check(make_user, fake_client):
    user = make_user("gen-13", plan="basic", credits=5)
    with pytest.raises(ValidationError):
        await GenerationService(fake_client).generate_for_user(UserSession(user), _request(prompt="   "))
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_guest_generation_consumes_allowance(fake_client):
    guests = LocalGuestEntitlement(allowance=2)
    service = GenerationService(fake_client, guests=guests)

    outcome = await service.generate_for_guest("guest-abc", _request())
    assert outcome.charged is True
    assert outcome.balance == 1
    assert outcome.text.endswith(settings.ATTRIBUTION_TEXT)
    assert fake_client.calls[0]["user_id"] is None


@pytest.mark.asyncio
async def test_guest_denied_outside_allowlist(fake_client):
    service = GenerationService(fake_client, guests=LocalGuestEntitlement(allowance=50))
    outcome = await service.generate_for_guest("guest-x", _request(ServiceKey.IMAGE_GENERATION))
    assert outcome.check.status == EntitlementStatus.ACCESS_DENIED
    assert fake_client.calls == []


@pytest.mark.asyncio
async def test_guest_generation_disabled_without_entitlement(fake_client):
    from creditsuite.core.errors import AppError

    with pytest.raises(AppError) as exc:
        await GenerationService(fake_client).generate_for_guest("guest-y", _request())
    assert exc.value.code == "guest_disabled"


def test_extract_title_and_content():
    assert extract_title_and_content("## Grande Notícia\nCorpo") == ("Grande Notícia", "Corpo")
    assert extract_title_and_content("**Título em negrito**\nTexto") == ("Título em negrito", "Texto")
    assert extract_title_and_content("Oi\nTexto") == (None, "Oi\nTexto")
    assert extract_title_and_content("") == (None, "")


def test_image_dimensions():
    assert image_dimensions(None) == (1024, 1024)
    assert image_dimensions("9:16") == (576, 1024)
    assert image_dimensions("1:1") == (1024, 1024)
    assert image_dimensions("wide") == (1024, 1024)
    assert image_dimensions("0:5") == (1024, 1024)


def test_attribution_placement():
    footer = settings.ATTRIBUTION_TEXT
    page = "<html><body><h1>Oi</h1></body></html>"
    stamped_page = apply_attribution(page, ServiceKey.LANDINGPAGE_GENERATOR, stamped=True)
    assert stamped_page.index(footer) < stamped_page.index("</body>")

    assert apply_attribution("prompt", ServiceKey.IMAGE_GENERATION, stamped=True) == "prompt"
    assert apply_attribution("texto", ServiceKey.NEWS_GENERATOR, stamped=False) == "texto"
    assert apply_attribution("texto", ServiceKey.NEWS_GENERATOR, stamped=True) == f"texto\n\n{footer}"


def test_attribution_can_be_disabled(monkeypatch):
    monkeypatch.setattr(settings, "ATTRIBUTION_ENABLED", False)
    assert apply_attribution("texto", ServiceKey.NEWS_GENERATOR, stamped=True) == "texto"
