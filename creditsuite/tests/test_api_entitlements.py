"""API tests for entitlement reads."""


def test_user_entitlements_summary(api_client, make_user):
    make_user("ent-1", plan="standard", credits=4)
    resp = api_client.get("/v1/entitlements/me", headers={"X-User-Id": "ent-1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["subject"] == "user"
    assert body["plan"]["id"] == "standard"
    assert body["balance"] == 4
    services = {s["key"]: s for s in body["services"]}
    assert services["image_generation"]["has_access"] is True
    assert services["image_generation"]["can_use"] is False
    assert services["landingpage_generator"]["has_access"] is False
    assert services["canva_structure"]["can_use"] is True


def test_first_request_provisions_free_account(api_client):
    resp = api_client.get("/v1/entitlements/me", headers={"X-User-Id": "brand-new"})
    body = resp.json()
    assert body["plan"]["id"] == "free"
    assert body["balance"] == 3


def test_stale_plan_id_resolves_to_free(api_client, make_user):
    make_user("ent-2", plan="gold-2019", credits=2)
    body = api_client.get("/v1/entitlements/me", headers={"X-User-Id": "ent-2"}).json()
    assert body["plan"]["id"] == "free"


def test_guest_entitlements_summary(api_client):
    resp = api_client.get("/v1/entitlements/me", headers={"X-Guest-Id": "guest-ent"})
    body = resp.json()
    assert body["subject"] == "guest"
    assert body["balance"] == 3
    allowed = sorted(s["key"] for s in body["services"] if s["has_access"])
    assert allowed == ["copy_generator", "news_generator", "prompt_generator"]


def test_check_route(api_client, make_user):
    make_user("ent-3", plan="basic", credits=2)
    headers = {"X-User-Id": "ent-3"}
    ok = api_client.post("/v1/entitlements/check", headers=headers, json={"service_key": "news_generator"})
    assert ok.json()["status"] == "ALLOWED"

    short = api_client.post(
        "/v1/entitlements/check", headers=headers, json={"service_key": "news_generator", "with_audio": True}
    )
    assert short.status_code == 200
    assert short.json()["status"] == "INSUFFICIENT_BALANCE"
    assert short.json()["cost"] == 3
