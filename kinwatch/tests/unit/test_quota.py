from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from kinwatch.persistence import paths
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.services.quota import MediaType, QuotaService


@pytest.mark.asyncio
async def test_first_check_of_the_day_rolls_counter_over(store: MemoryStore, fixed_now: datetime) -> None:
    await store.set(paths.limits("u1", "photos"), {"count": 5, "max": 5, "date": "2026-03-09"})
    service = QuotaService(time_provider=lambda: fixed_now)

    check = await service.check_and_reset(store, "u1", MediaType.PHOTOS)

    assert check.can_proceed is True
    assert check.state.count == 0
    assert await store.get(paths.limits("u1", "photos")) == {"count": 0, "max": 5, "date": "2026-03-10"}


@pytest.mark.asyncio
async def test_day_boundary_follows_local_calendar(store: MemoryStore) -> None:
    # 19:00 UTC on the 9th is already the 10th in IST.
    late_utc = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
    service = QuotaService(time_provider=lambda: late_utc)

    assert service.today() == "2026-03-10"


@pytest.mark.asyncio
async def test_increments_allow_until_max(store: MemoryStore, fixed_now: datetime) -> None:
    await store.set(paths.limits("u1", "videos"), {"count": 0, "max": 3, "date": "2026-03-10"})
    service = QuotaService(time_provider=lambda: fixed_now)

    observed = []
    for _ in range(3):
        check = await service.check_and_reset(store, "u1", MediaType.VIDEOS)
        observed.append(check.can_proceed)
        await service.increment(store, "u1", MediaType.VIDEOS)
    final = await service.check_and_reset(store, "u1", MediaType.VIDEOS)

    assert observed == [True, True, True]
    assert final.can_proceed is False
    assert final.state.count == 3


@pytest.mark.asyncio
async def test_missing_state_uses_defaults(store: MemoryStore, fixed_now: datetime) -> None:
    service = QuotaService(time_provider=lambda: fixed_now)

    check = await service.check_and_reset(store, "u-new", MediaType.VIDEOS)

    assert check.can_proceed is True
    assert check.state.max == 4
    assert await service.increment(store, "u-new", MediaType.VIDEOS) == 1


@pytest.mark.asyncio
async def test_zero_max_never_allows(store: MemoryStore, fixed_now: datetime) -> None:
    await store.set(paths.limits("u1", "audio"), {"count": 0, "max": 0, "date": "2026-03-10"})
    service = QuotaService(time_provider=lambda: fixed_now)

    assert (await service.check_and_reset(store, "u1", MediaType.AUDIO)).can_proceed is False


def test_default_limits_block() -> None:
    assert QuotaService().default_limits() == {
        "photos": {"count": 0, "max": 5},
        "videos": {"count": 0, "max": 4},
        "audio": {"count": 0, "max": 5},
    }


@pytest.mark.asyncio
async def test_concurrent_checks_can_overshoot_max_by_design(store: MemoryStore, fixed_now: datetime) -> None:
    # The daily limit is soft: check and increment are separate store calls, so two
    # callers that both check before either increments can land one past max.
    await store.set(paths.limits("u1", "photos"), {"count": 4, "max": 5, "date": "2026-03-10"})
    service = QuotaService(time_provider=lambda: fixed_now)

    first, second = await asyncio.gather(
        service.check_and_reset(store, "u1", MediaType.PHOTOS),
        service.check_and_reset(store, "u1", MediaType.PHOTOS),
    )
    await asyncio.gather(
        service.increment(store, "u1", MediaType.PHOTOS),
        service.increment(store, "u1", MediaType.PHOTOS),
    )

    assert first.can_proceed is True
    assert second.can_proceed is True
    assert await store.get(paths.limits("u1", "photos/count")) == 6


@pytest.mark.asyncio
async def test_concurrent_increments_are_never_lost(store: MemoryStore, fixed_now: datetime) -> None:
    await store.set(paths.limits("u1", "audio"), {"count": 0, "max": 5, "date": "2026-03-10"})
    service = QuotaService(time_provider=lambda: fixed_now)

    results = await asyncio.gather(*(service.increment(store, "u1", MediaType.AUDIO) for _ in range(25)))

    assert sorted(results) == list(range(1, 26))
    assert await store.get(paths.limits("u1", "audio/count")) == 25
