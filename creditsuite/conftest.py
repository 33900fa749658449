# creditsuite/conftest.py
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import update

from creditsuite.core.errors import ConfigUnavailableError, ConflictError
from creditsuite.features.config_store.service import ConfigRecord
from creditsuite.features.generation.client import GenerationResult, GenerationSource

TEST_DB_URL = "sqlite://"


class FakeGenerationClient:
    """Records calls and returns a canned result (or raises / stalls on demand)."""

    def __init__(
        self,
        text: str = "Manchete de teste\nCorpo da notícia gerada.",
        *,
        sources: Optional[List[GenerationSource]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.text = text
        self.sources = sources or []
        self.error = error
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def invoke(self, prompt, service_key, user_id=None, options=None):
        self.calls.append({"prompt": prompt, "service_key": service_key, "user_id": user_id, "options": options})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, sources=list(self.sources))


class InMemoryConfigStore:
    """Dict-backed ConfigStore with the same version semantics as the SQL store."""

    def __init__(self):
        self.records: Dict[str, ConfigRecord] = {}
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key):
        if self.fail_reads:
            raise ConfigUnavailableError(f"store offline ({key})")
        return self.records.get(key)

    def put(self, key, value, actor, expected_version=None):
        if self.fail_writes:
            raise ConfigUnavailableError(f"store offline ({key})")
        current = self.records.get(key)
        current_version = current.version if current else 0
        if expected_version is not None and expected_version != current_version:
            raise ConflictError("stale write", code="version_conflict")
        self.records[key] = ConfigRecord(key=key, value=value, version=current_version + 1, updated_by=actor)
        return current_version + 1


@pytest.fixture(autouse=True)
def database(monkeypatch):
    """
    Fresh in-memory SQLite database and clean process-wide singletons per test.
    """
    from creditsuite.core.database import create_all_tables, dispose_engine, init_engine
    from creditsuite.features.audit.service import clear_buffered_audit_events
    from creditsuite.features.config_store.service import set_config_store
    from creditsuite.features.guest.service import reset_guest_entitlement
    from creditsuite.features.plans.catalog import reset_plan_catalog

    monkeypatch.setenv("TEST_DATABASE_URL", TEST_DB_URL)
    dispose_engine()
    init_engine(TEST_DB_URL)
    create_all_tables()
    set_config_store(None)
    reset_plan_catalog()
    reset_guest_entitlement()
    clear_buffered_audit_events()
    yield
    reset_plan_catalog()
    reset_guest_entitlement()
    set_config_store(None)
    dispose_engine()


@pytest.fixture
def memory_store():
    return InMemoryConfigStore()


@pytest.fixture
def make_client():
    return FakeGenerationClient


@pytest.fixture
def fake_client():
    return FakeGenerationClient()


@pytest.fixture
def make_user():
    """
    Factory creating an account and forcing plan/credits/role directly in the table.
    """
    from creditsuite.core.database import get_db_session, users
    from creditsuite.features.users.service import get_or_create_user, get_user

    def _make(user_id: str, *, plan: str = "free", credits: int = 3, role: str = "user"):
        get_or_create_user(user_id, email=f"{user_id}@example.com")
        with get_db_session() as session:
            session.execute(
                update(users)
                .where(users.c.user_id == user_id)
                .values(plan_id=plan, credits=credits, role=role)
            )
        return get_user(user_id)

    return _make


@pytest.fixture
def api_client(fake_client):
    """
    TestClient over the full app with the generation backend replaced by fake_client.
    """
    from fastapi.testclient import TestClient

    from creditsuite.api.generation import get_generation_service
    from creditsuite.features.generation.service import GenerationService
    from creditsuite.features.guest.service import get_guest_entitlement
    from creditsuite.main import app

    app.dependency_overrides[get_generation_service] = lambda: GenerationService(
        fake_client, guests=get_guest_entitlement()
    )
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
