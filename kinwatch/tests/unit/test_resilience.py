from __future__ import annotations

import pytest

from kinwatch.core.errors import InvalidPathError, StoreUnavailableError
from kinwatch.services.resilience import RetryPolicy, retry_async, secondary_write_policy


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_failures() -> None:
    attempts = {"count": 0}
    sleeps: list[float] = []

    async def _flaky() -> str:
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise StoreUnavailableError("busy")
        return "ok"

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    result = await retry_async(
        _flaky,
        policy=RetryPolicy(timeout_ms=1000, max_attempts=3, backoff_ms=10),
        sleep=_sleep,
    )

    assert result == "ok"
    assert attempts["count"] == 3
    assert len(sleeps) == 2
    # Backoff doubles between attempts, within the jitter band.
    assert 0.005 <= sleeps[0] <= 0.015
    assert 0.01 <= sleeps[1] <= 0.03


@pytest.mark.asyncio
async def test_retry_gives_up_after_max_attempts() -> None:
    attempts = {"count": 0}

    async def _down() -> None:
        attempts["count"] += 1
        raise StoreUnavailableError("down")

    async def _no_sleep(_seconds: float) -> None:
        return None

    with pytest.raises(StoreUnavailableError):
        await retry_async(_down, policy=RetryPolicy(timeout_ms=1000, max_attempts=2, backoff_ms=0), sleep=_no_sleep)
    assert attempts["count"] == 2


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried() -> None:
    attempts = {"count": 0}

    async def _bad_path() -> None:
        attempts["count"] += 1
        raise InvalidPathError("bad path")

    with pytest.raises(InvalidPathError):
        await retry_async(_bad_path, policy=RetryPolicy(timeout_ms=1000, max_attempts=5, backoff_ms=0))
    assert attempts["count"] == 1


def test_secondary_write_policy_comes_from_settings(monkeypatch) -> None:
    from kinwatch.core.config import get_settings

    monkeypatch.setenv("SECONDARY_WRITE_MAX_ATTEMPTS", "7")
    get_settings.cache_clear()

    assert secondary_write_policy() == RetryPolicy(timeout_ms=5000, max_attempts=7, backoff_ms=100)
