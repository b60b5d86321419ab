from __future__ import annotations

from datetime import datetime, timezone

import pytest

from kinwatch.core.config import get_settings
from kinwatch.persistence.factory import set_store
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.commands import reset_command_dispatcher
from kinwatch.services.ingestion import reset_ingestion_router
from kinwatch.services.quota import reset_quota_service


# 12:00 IST on 2026-03-10; the quota day is "2026-03-10".
FIXED_NOW = datetime(2026, 3, 10, 6, 30, tzinfo=timezone.utc)
TEST_JWT_SECRET = "kinwatch-test-signing-secret-with-enough-bytes"


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch) -> None:
    # Every test starts from default settings, a fresh store slot and no cached services.
    monkeypatch.setenv("AUTH_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("TRIGGER_EXECUTION_MODE", "inline")
    monkeypatch.setenv("STORE_BACKEND", "memory")
    get_settings.cache_clear()
    reset_quota_service()
    reset_ingestion_router()
    reset_command_dispatcher()
    set_store(None)
    yield
    set_store(None)
    reset_quota_service()
    reset_ingestion_router()
    reset_command_dispatcher()
    get_settings.cache_clear()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW
