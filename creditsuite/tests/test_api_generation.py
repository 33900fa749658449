"""API tests for gated generation, for accounts and guests."""

from creditsuite.core.config import settings
from creditsuite.features.users.service import get_user


def _generate(client, headers=None, **body):
    payload = {"prompt": "Escreva sobre IA", "serviceKey": "news_generator"}
    payload.update(body)
    return client.post("/v1/generate", json=payload, headers=headers or {})


def test_user_generation_charges_balance(api_client, make_user, fake_client):
    make_user("api-gen-1", plan="basic", credits=4)
    resp = _generate(api_client, {"X-User-Id": "api-gen-1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["subject"] == "user"
    assert body["charged"] is True
    assert body["cost"] == 1
    assert body["balance"] == 3
    assert body["title"] == "Manchete de teste"
    assert get_user("api-gen-1").credits == 3
    assert len(fake_client.calls) == 1


def test_access_denied_has_upgrade_details(api_client, make_user, fake_client):
    make_user("api-gen-2", plan="free", credits=3)
    resp = _generate(api_client, {"X-User-Id": "api-gen-2"}, serviceKey="landingpage_generator")
    assert resp.status_code == 403
    error = resp.json()["error"]
    assert error["code"] == "access_denied"
    assert error["details"]["prompt"] == "upgrade"
    assert error["details"]["denied_key"] == "landingpage_generator"
    assert fake_client.calls == []


def test_insufficient_balance_is_402(api_client, make_user, fake_client):
    make_user("api-gen-3", plan="basic", credits=1)
    resp = _generate(api_client, {"X-User-Id": "api-gen-3"}, withAudio=True)
    assert resp.status_code == 402
    error = resp.json()["error"]
    assert error["code"] == "insufficient_balance"
    assert error["details"]["cost"] == 3
    assert error["details"]["prompt"] == "buy_credits"
    assert fake_client.calls == []


def test_unknown_service_key_is_rejected(api_client, make_user):
    make_user("api-gen-4", plan="basic", credits=5)
    resp = _generate(api_client, {"X-User-Id": "api-gen-4"}, serviceKey="teleporter")
    assert resp.status_code == 422


def test_backend_failure_is_502_and_uncharged(api_client, make_user, fake_client):
    from creditsuite.core.errors import GenerationFailureError

    fake_client.error = GenerationFailureError("upstream down")
    make_user("api-gen-5", plan="basic", credits=5)
    resp = _generate(api_client, {"X-User-Id": "api-gen-5"})
    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "generation_failed"
    assert get_user("api-gen-5").credits == 5


def test_guest_generation_uses_guest_allowance(api_client):
    headers = {"X-Guest-Id": "guest-api-1"}
    for expected in (2, 1, 0):
        resp = _generate(api_client, headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["subject"] == "guest"
        assert body["balance"] == expected
        assert body["text"].endswith(settings.ATTRIBUTION_TEXT)
        assert resp.headers["x-guest-id"] == "guest-api-1"

    exhausted = _generate(api_client, headers)
    assert exhausted.status_code == 402
    assert exhausted.json()["error"]["details"]["prompt"] == "signup"


def test_guest_cannot_use_paid_services(api_client):
    resp = _generate(api_client, {"X-Guest-Id": "guest-api-2"}, serviceKey="image_generation")
    assert resp.status_code == 403
    assert resp.json()["error"]["details"]["prompt"] == "signup"


def test_guest_id_is_minted_when_missing(api_client):
    resp = _generate(api_client)
    assert resp.status_code == 200
    assert resp.headers["x-guest-id"].startswith("guest-")
