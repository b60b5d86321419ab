from __future__ import annotations

from datetime import datetime

import pytest

from kinwatch.core.errors import StoreUnavailableError
from kinwatch.persistence import paths
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.accounts import provision_account, purge_account_data
from kinwatch.services.replica import project_profile, sync_read_replica


@pytest.mark.asyncio
async def test_provision_writes_default_profile_replica_and_welcome(store: MemoryStore, fixed_now: datetime) -> None:
    profile = await provision_account(store, "u1", email="u1@example.com", now=fixed_now)

    assert profile["name"] == "New User"
    assert profile["account_type"] == "free"
    assert profile["limits"] == {
        "photos": {"count": 0, "max": 5},
        "videos": {"count": 0, "max": 4},
        "audio": {"count": 0, "max": 5},
    }
    assert profile["security"] == {"warnings": 0, "is_frozen": False}
    assert await store.get(paths.profile("u1")) == profile
    assert await store.get(paths.replica("u1")) == project_profile("u1", profile, fixed_now)
    welcome = await store.get(paths.join(paths.notifications("u1"), "welcome"))
    assert welcome["message"] == "Welcome to Kinwatch! You are on the Free Plan."


@pytest.mark.asyncio
async def test_provision_is_idempotent(store: MemoryStore, fixed_now: datetime) -> None:
    first = await provision_account(store, "u1", email="u1@example.com", display_name="Asha", now=fixed_now)
    await store.set(paths.account_type("u1"), "pro")

    second = await provision_account(store, "u1", email="other@example.com", now=fixed_now)

    assert first["name"] == "Asha"
    assert second["account_type"] == "pro"
    assert second["email"] == "u1@example.com"


def test_projection_fills_unknowns(fixed_now: datetime) -> None:
    assert project_profile("u9", {}, fixed_now) == {
        "id": "u9",
        "email": "Unknown",
        "name": "Unknown",
        "account_type": "free",
        "_synced_at": int(fixed_now.timestamp() * 1000),
    }


@pytest.mark.asyncio
async def test_replica_entry_is_removed_with_the_profile(store: MemoryStore, fixed_now: datetime) -> None:
    await sync_read_replica(store, "u1", {"email": "a@example.com", "account_type": "pro"}, now=fixed_now)
    assert (await store.get(paths.replica("u1")))["account_type"] == "pro"

    assert await sync_read_replica(store, "u1", None) is True
    assert await store.get(paths.replica("u1")) is None


class _BrokenReplicaStore(MemoryStore):
    async def set(self, path, value) -> None:
        if path.startswith(paths.REPLICA_ROOT):
            raise StoreUnavailableError("replica down")
        await super().set(path, value)


@pytest.mark.asyncio
async def test_replica_failure_is_reported_not_raised(fixed_now: datetime) -> None:
    store = _BrokenReplicaStore()

    assert await sync_read_replica(store, "u1", {"email": "a@example.com"}, now=fixed_now) is False


@pytest.mark.asyncio
async def test_purge_removes_every_owned_subtree(store: MemoryStore) -> None:
    await store.set(paths.profile("u1"), {"email": "a@example.com"})
    await store.set(paths.replica("u1"), {"id": "u1"})
    await store.set(paths.vault("u1", "Banking_Logs", "r1"), {"text": "otp"})
    await store.set(paths.dead_letter("u1", "r2"), {"target_path": "x"})
    await store.set(paths.profile("u2"), {"email": "b@example.com"})

    await purge_account_data(store, "u1")

    snapshot = store.snapshot()
    assert "u1" not in snapshot.get("account", {})
    assert "Vault" not in snapshot
    assert "AccountIndex" not in snapshot
    assert "DeadLetters" not in snapshot
    assert await store.get(paths.profile("u2")) == {"email": "b@example.com"}
