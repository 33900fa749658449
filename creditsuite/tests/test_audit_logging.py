"""Tests for the audit sink."""

from creditsuite.core.config import settings
from creditsuite.core.logging import request_id_ctx_var
from creditsuite.features.audit.service import (
    MODULE_PLANS,
    clear_buffered_audit_events,
    get_buffered_audit_events,
    list_audit_entries,
    record_audit,
)


def test_record_audit_persists_row():
    record_audit("admin-1", "update_plans_config", MODULE_PLANS, {"plan_count": 4})
    rows = list_audit_entries(module=MODULE_PLANS)
    assert len(rows) == 1
    assert rows[0]["actor_id"] == "admin-1"
    assert rows[0]["level"] == "info"
    assert rows[0]["details"] == {"plan_count": 4}


def test_request_id_is_attached():
    token = request_id_ctx_var.set("rid-audit")
    try:
        record_audit("admin-1", "grant_credits", "Creditos", {"amount": 5})
    finally:
        request_id_ctx_var.reset(token)
    assert list_audit_entries(action="grant_credits")[0]["details"]["request_id"] == "rid-audit"


def test_long_values_are_truncated():
    record_audit("admin-1", "note", MODULE_PLANS, {"text": "x" * 2000})
    text = list_audit_entries(action="note")[0]["details"]["text"]
    assert text.endswith("...<truncated>")
    assert len(text) < 600


def test_buffered_without_database(monkeypatch):
    monkeypatch.delenv("TEST_DATABASE_URL", raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    clear_buffered_audit_events()
    record_audit("admin-2", "update_payment_settings", "Pagamentos")
    events = get_buffered_audit_events()
    assert events[-1]["action"] == "update_payment_settings"
    clear_buffered_audit_events()


def test_failed_write_is_buffered_not_raised(monkeypatch):
    import creditsuite.features.audit.service as audit

    def boom():
        raise RuntimeError("db down")

    monkeypatch.setattr(audit, "get_db_session", boom)
    clear_buffered_audit_events()
    record_audit("admin-3", "update_user_plan", "Usuarios")
    assert get_buffered_audit_events()[-1]["actor_id"] == "admin-3"


def test_disabled_audit_records_nothing(monkeypatch):
    monkeypatch.setattr(settings, "AUDIT_ENABLED", False)
    record_audit("admin-4", "noop", MODULE_PLANS)
    assert list_audit_entries(action="noop") == []
