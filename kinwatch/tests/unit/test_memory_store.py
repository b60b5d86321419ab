from __future__ import annotations

import pytest

from kinwatch.core.errors import InvalidPathError
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.persistence.store import KeyedStore, generate_push_key


@pytest.mark.asyncio
async def test_set_get_and_nested_reads(store: MemoryStore) -> None:
    await store.set("account/u1/profile", {"email": "a@example.com", "limits": {"photos": {"max": 5}}})

    assert await store.get("account/u1/profile/email") == "a@example.com"
    assert await store.get("account/u1/profile/limits/photos/max") == 5
    assert await store.get("account/u1/missing") is None
    assert await store.exists("account/u1/profile/limits")
    assert isinstance(store, KeyedStore)


@pytest.mark.asyncio
async def test_empty_values_are_deletions_and_prune_parents(store: MemoryStore) -> None:
    await store.set("a/b/c", 1)
    await store.set("a/b/c", None)

    assert await store.get("a") is None
    await store.set("x", {"keep": 1, "drop": {}, "gone": None})
    assert await store.get("x") == {"keep": 1}


@pytest.mark.asyncio
async def test_multi_path_update_is_applied_together(store: MemoryStore) -> None:
    await store.set("account/u1/profile/limits/photos", {"count": 3, "max": 5, "date": "2026-03-09"})

    await store.update("account/u1/profile/limits", {"photos/count": 0, "photos/date": "2026-03-10"})

    assert await store.get("account/u1/profile/limits/photos") == {"count": 0, "max": 5, "date": "2026-03-10"}


@pytest.mark.asyncio
async def test_update_rejects_overlapping_paths_without_writing(store: MemoryStore) -> None:
    with pytest.raises(InvalidPathError):
        await store.update("", {"account/u1": None, "account/u1/profile": {"x": 1}, "other": 1})

    assert await store.get("other") is None


@pytest.mark.asyncio
async def test_invalid_path_segments_are_rejected(store: MemoryStore) -> None:
    with pytest.raises(InvalidPathError):
        await store.set("account/u.1", 1)
    with pytest.raises(InvalidPathError):
        await store.get("account//profile")


@pytest.mark.asyncio
async def test_update_rejects_bad_nested_keys_before_any_target_lands(store: MemoryStore) -> None:
    with pytest.raises(InvalidPathError):
        await store.update("account/u1", {"first": {"ok": 1}, "second": {"a.b": "x"}})

    assert await store.get("account/u1") is None


@pytest.mark.asyncio
async def test_push_keys_sort_in_creation_order(store: MemoryStore) -> None:
    keys = [await store.push("log", {"n": index}) for index in range(5)]

    assert keys == sorted(keys)
    assert await store.child_keys("log") == keys
    assert len(set(keys)) == 5


def test_push_keys_within_one_millisecond_increase() -> None:
    first = generate_push_key(1_700_000_000_000)
    second = generate_push_key(1_700_000_000_000)

    assert len(first) == 20
    assert second > first


@pytest.mark.asyncio
async def test_transaction_applies_function_atomically(store: MemoryStore) -> None:
    results = [await store.transaction("counter", lambda current: (current or 0) + 1) for _ in range(3)]

    assert results == [1, 2, 3]
    assert await store.get("counter") == 3


@pytest.mark.asyncio
async def test_query_orders_and_filters_by_child(store: MemoryStore) -> None:
    await store.set(
        "AccountIndex",
        {
            "u1": {"account_type": "pro", "n": 3},
            "u2": {"account_type": "free", "n": 1},
            "u3": {"account_type": "pro", "n": 2},
        },
    )

    ordered = await store.query("AccountIndex", order_by_child="n")
    pro = await store.query("AccountIndex", order_by_child="account_type", equal_to="pro")
    bounded = await store.query("AccountIndex", order_by_child="n", end_at=2)

    assert [key for key, _ in ordered] == ["u2", "u3", "u1"]
    assert [key for key, _ in pro] == ["u1", "u3"]
    assert [key for key, _ in bounded] == ["u2", "u3"]


@pytest.mark.asyncio
async def test_returned_values_are_copies() -> None:
    store = MemoryStore({"a": {"b": 1}})

    value = await store.get("a")
    value["b"] = 99

    assert await store.get("a/b") == 1
