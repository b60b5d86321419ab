from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
import uuid

from arq import create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from kinwatch.core.config import get_settings
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.triggers import ChangeEvent, dispatch_change


logger = logging.getLogger(__name__)

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()
# Keep heartbeat key stable for the health endpoint lookup.
WORKER_HEARTBEAT_KEY = "kinwatch:worker:heartbeat"
TRIGGER_JOB_NAME = "process_change"


def _queue_key(queue_name: str) -> str:
    # Use arq's queue naming convention for depth checks.
    return f"arq:queue:{queue_name}"


class TriggerJobPayload(BaseModel):
    # Serialized change event handed from the API to the trigger worker.
    path: str
    before: Any = None
    after: Any = None
    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def to_event(self) -> ChangeEvent:
        return ChangeEvent(path=self.path, before=self.before, after=self.after)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _inline_mode() -> bool:
    return get_settings().trigger_execution_mode.lower() == "inline"


async def get_redis_pool():
    # Cache the Redis pool to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        # Drop loop-bound pools to avoid cross-loop errors in tests.
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.trigger_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def get_queue_depth() -> int | None:
    # None signals that Redis is unreachable.
    if _inline_mode():
        return 0
    try:
        redis = await get_redis_pool()
        depth = await redis.llen(_queue_key(get_settings().trigger_queue_name))
        return int(depth)
    except (RedisError, OSError):
        return None


async def set_worker_heartbeat(*, timestamp: datetime | None = None) -> None:
    if _inline_mode():
        return
    redis = await get_redis_pool()
    heartbeat_time = timestamp or _utc_now()
    await redis.set(WORKER_HEARTBEAT_KEY, heartbeat_time.isoformat())


async def get_worker_heartbeat() -> datetime | None:
    # None when the heartbeat is missing or Redis is unavailable.
    if _inline_mode():
        return None
    try:
        redis = await get_redis_pool()
        raw_value = await redis.get(WORKER_HEARTBEAT_KEY)
    except (RedisError, OSError):
        return None
    if not raw_value:
        return None
    value = raw_value.decode("utf-8") if isinstance(raw_value, (bytes, bytearray)) else str(raw_value)
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


async def process_trigger_job(store: KeyedStore, payload: TriggerJobPayload) -> dict[str, Any]:
    # Worker and inline mode share the same dispatch path.
    return await dispatch_change(store, payload.to_event())


async def enqueue_change(store: KeyedStore, event: ChangeEvent) -> str:
    """Hand a change event to the trigger pipeline and return its job id.

    Inline mode dispatches before returning, which keeps tests and local runs
    free of Redis. Queue mode returns as soon as the job is enqueued.
    """
    payload = TriggerJobPayload(path=event.path, before=event.before, after=event.after)
    if _inline_mode():
        await process_trigger_job(store, payload)
        return payload.job_id

    redis = await get_redis_pool()
    job = await redis.enqueue_job(
        TRIGGER_JOB_NAME,
        payload.model_dump(),
        _job_id=payload.job_id,
        _queue_name=get_settings().trigger_queue_name,
    )
    logger.info("change_enqueued path=%s job_id=%s", event.path, payload.job_id)
    # When a job id already exists, arq returns None; keep tracing with the same id.
    return job.job_id if job else payload.job_id
