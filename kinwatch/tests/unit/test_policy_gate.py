from __future__ import annotations

from datetime import datetime

import pytest

from kinwatch.persistence import paths
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.audit import list_audit_entries
from kinwatch.services.policy_gate import DenyReason, PolicyGate
from kinwatch.services.quota import MediaType, QuotaService
from kinwatch.tests.utils.accounts import seed_account


def _gate(now: datetime) -> PolicyGate:
    return PolicyGate(QuotaService(time_provider=lambda: now))


@pytest.mark.asyncio
async def test_frozen_account_is_denied_regardless_of_quota(store: MemoryStore, fixed_now: datetime) -> None:
    await seed_account(store, "u1", created_at=fixed_now, frozen=True)

    decision = await _gate(fixed_now).check_allowed(store, "u1", MediaType.PHOTOS, actor_id="admin")

    assert decision.allowed is False
    assert decision.reason is DenyReason.FROZEN
    entries = await list_audit_entries(store)
    assert [entry["metadata"]["reason"] for entry in entries] == ["FROZEN"]


@pytest.mark.asyncio
async def test_unfreezing_restores_quota_behaviour(store: MemoryStore, fixed_now: datetime) -> None:
    await seed_account(store, "u1", created_at=fixed_now, frozen=True)
    gate = _gate(fixed_now)
    assert not (await gate.check_allowed(store, "u1", MediaType.PHOTOS, actor_id="admin")).allowed

    await store.set(paths.frozen_flag("u1"), False)

    assert (await gate.check_allowed(store, "u1", MediaType.PHOTOS, actor_id="admin")).allowed


@pytest.mark.asyncio
async def test_exhausted_quota_is_denied_and_audited(store: MemoryStore, fixed_now: datetime) -> None:
    await seed_account(
        store,
        "u1",
        created_at=fixed_now,
        limits={"photos": {"count": 5, "max": 5, "date": "2026-03-10"}},
    )

    decision = await _gate(fixed_now).check_allowed(
        store, "u1", MediaType.PHOTOS, actor_id="admin", audit_metadata={"deviceKey": "d1"}
    )

    assert decision.reason is DenyReason.LIMIT_REACHED
    assert decision.quota is not None and decision.quota.state.count == 5
    [entry] = await list_audit_entries(store)
    assert entry["action"] == "COMMAND_BLOCKED"
    assert entry["actor"] == "admin"
    assert entry["metadata"] == {"targetUid": "u1", "deviceKey": "d1", "reason": "LIMIT_REACHED", "type": "photos"}


@pytest.mark.asyncio
async def test_no_media_type_skips_quota(store: MemoryStore, fixed_now: datetime) -> None:
    await seed_account(
        store,
        "u1",
        created_at=fixed_now,
        limits={"photos": {"count": 5, "max": 5, "date": "2026-03-10"}},
    )

    decision = await _gate(fixed_now).check_allowed(store, "u1", None, actor_id="SYSTEM")

    assert decision.allowed is True
    assert await list_audit_entries(store) == []
