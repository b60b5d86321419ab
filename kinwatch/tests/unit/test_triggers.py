from __future__ import annotations

from datetime import datetime

import pytest

from kinwatch.persistence import paths
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.ingestion import IngestionRouter
from kinwatch.services.policy_gate import PolicyGate
from kinwatch.services.quota import QuotaService
from kinwatch.services.trigger_queue import TriggerJobPayload, enqueue_change, process_trigger_job
from kinwatch.services.triggers import ChangeEvent, dispatch_change, match_route


def _router(now: datetime) -> IngestionRouter:
    return IngestionRouter(gate=PolicyGate(QuotaService(time_provider=lambda: now)), time_provider=lambda: now)


def test_routes_match_device_paths_but_not_reserved_children() -> None:
    assert match_route("account/u1/profile")[1] == {"uid": "u1"}
    assert match_route("account/u1/d1/device_status")[1] == {"uid": "u1", "device_key": "d1"}
    assert match_route("account/u1/d1/sms/data/r9")[1] == {
        "uid": "u1",
        "device_key": "d1",
        "kind": "sms",
        "record_id": "r9",
    }
    assert match_route("account/u1/notifications/device_status") is None
    assert match_route("account/u1/profile/limits") is None
    assert match_route("Vault/u1/Danger_Logs/r1") is None


@pytest.mark.asyncio
async def test_telemetry_trigger_fires_on_create_only(store: MemoryStore, fixed_now: datetime) -> None:
    path = paths.telemetry("u1", "d1", "sms", "r1")
    record = {"smsBody": "they want to kill him"}
    await store.set(path, record)

    created = await dispatch_change(store, ChangeEvent(path=path, after=record), router=_router(fixed_now))
    edited = await dispatch_change(
        store, ChangeEvent(path=path, before=record, after={"smsBody": "ok"}), router=_router(fixed_now)
    )

    assert created == {"handled": True, "action": "routed", "category": "danger", "reason": None}
    assert edited == {"handled": False}
    assert await store.exists(paths.vault("u1", "Danger_Logs", "r1"))


@pytest.mark.asyncio
async def test_profile_trigger_keeps_replica_in_step(store: MemoryStore) -> None:
    profile = {"email": "a@example.com", "name": "Asha", "account_type": "pro"}

    await dispatch_change(store, ChangeEvent(path=paths.profile("u1"), after=profile))
    assert (await store.get(paths.replica("u1")))["account_type"] == "pro"

    await dispatch_change(store, ChangeEvent(path=paths.profile("u1"), before=profile, after=None))
    assert await store.get(paths.replica("u1")) is None


@pytest.mark.asyncio
async def test_device_status_trigger_runs_battery_monitor(store: MemoryStore, fixed_now: datetime) -> None:
    result = await dispatch_change(
        store,
        ChangeEvent(path=paths.device_status("u1", "d1"), after={"battery": 5}),
        router=_router(fixed_now),
    )

    assert result == {"handled": True, "alerted": True}


@pytest.mark.asyncio
async def test_unmatched_paths_are_ignored(store: MemoryStore) -> None:
    assert await dispatch_change(store, ChangeEvent(path="chats/u1/d1/messages/m1", after={"t": 1})) == {
        "handled": False
    }


@pytest.mark.asyncio
async def test_inline_enqueue_dispatches_before_returning(store: MemoryStore) -> None:
    profile = {"email": "a@example.com", "account_type": "free"}

    job_id = await enqueue_change(store, ChangeEvent(path=paths.profile("u1"), after=profile))

    assert job_id
    assert (await store.get(paths.replica("u1")))["email"] == "a@example.com"


@pytest.mark.asyncio
async def test_worker_payload_round_trips_the_event(store: MemoryStore) -> None:
    payload = TriggerJobPayload.model_validate(
        {"path": paths.profile("u2"), "before": None, "after": {"email": "b@example.com"}}
    )

    assert payload.to_event() == ChangeEvent(path="account/u2/profile", after={"email": "b@example.com"})
    assert (await process_trigger_job(store, payload))["handled"] is True
