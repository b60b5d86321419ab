from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from kinwatch.core.config import get_settings
from kinwatch.core.errors import StoreUnavailableError


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, OSError, StoreUnavailableError)


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient storage/timeout failures by default.
    return isinstance(exc, TransientException)


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def secondary_write_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.secondary_write_timeout_ms,
        max_attempts=settings.secondary_write_max_attempts,
        backoff_ms=settings.secondary_write_backoff_ms,
    )


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Any:
    # Retry helper with jittered exponential backoff for transient failures only.
    policy = policy or secondary_write_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            logger.info("retrying_after_failure attempt=%s sleep_s=%.3f error=%s", attempt, sleep_s, exc.__class__.__name__)
            await sleep(sleep_s)
            attempt += 1
