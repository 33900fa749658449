"""Tests for structured logging and request_id propagation."""

import json
import logging

import pytest

from creditsuite.core.config import Settings, validate_config
from creditsuite.core.logging import JsonFormatter, latency_bucket_ms, log_event


def test_request_id_in_response_and_logs(api_client, caplog):
    with caplog.at_level(logging.INFO, logger="creditsuite"):
        response = api_client.get("/healthz")
    rid = response.headers.get("x-request-id")
    assert rid
    records = [r for r in caplog.records if getattr(r, "request_id", None) == rid]
    assert records, "Expected logs to contain request_id from response"
    assert len({r.request_id for r in records}) == 1


def test_json_formatter_emits_structured_fields():
    record = logging.LogRecord("creditsuite", logging.INFO, __file__, 1, "debit", None, None)
    record.request_id = "rid-1"
    record.user_id = "u-1"
    record.service_key = "news_generator"
    record.event_type = "debit"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["request_id"] == "rid-1"
    assert payload["user_id"] == "u-1"
    assert payload["service_key"] == "news_generator"
    assert "error_code" not in payload


def test_log_event_truncates_extra(caplog):
    with caplog.at_level(logging.INFO, logger="creditsuite"):
        log_event("info", "generation.denied", request_id="rid-2", user_id="u-2", extra={"prompt": "y" * 1000})
    record = caplog.records[-1]
    assert record.request_id == "rid-2"
    assert record.prompt.endswith("...<truncated>")


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(5000) == ">=1000ms"


def test_validate_config_strict_lists_missing_keys():
    cfg = Settings(DATABASE_URL="sqlite://", AUTH_JWT_SECRET=None, GENERATION_URL=None, GENERATION_API_KEY=None)
    with pytest.raises(RuntimeError) as exc:
        validate_config(strict=True, settings_obj=cfg)
    assert "AUTH_JWT_SECRET" in str(exc.value)
    assert "DATABASE_URL" not in str(exc.value)


def test_validate_config_lenient_only_warns(caplog):
    cfg = Settings(DATABASE_URL=None, AUTH_JWT_SECRET=None, GENERATION_URL=None, GENERATION_API_KEY=None)
    with caplog.at_level(logging.WARNING, logger="creditsuite"):
        assert validate_config(strict=False, settings_obj=cfg) is True
    assert any("Missing required configuration" in r.getMessage() for r in caplog.records)
