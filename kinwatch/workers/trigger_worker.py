from __future__ import annotations

import asyncio
import logging
from zoneinfo import ZoneInfo

from arq import cron
from arq.connections import RedisSettings

from kinwatch.core.config import get_settings
from kinwatch.core.logging import configure_logging
from kinwatch.persistence.factory import get_store
from kinwatch.services.maintenance import run_maintenance_task
from kinwatch.services.trigger_queue import (
    TriggerJobPayload,
    process_trigger_job,
    set_worker_heartbeat,
)


logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL_S = 30


async def process_change(ctx, payload: dict) -> dict:
    # Validate payloads in the worker to enforce the job schema.
    job_payload = TriggerJobPayload.model_validate(payload)
    return await process_trigger_job(get_store(), job_payload)


async def reset_quotas(ctx) -> dict:
    return await run_maintenance_task("reset_quotas", get_store())


async def purge_inactive(ctx) -> dict:
    return await run_maintenance_task("purge_inactive", get_store())


async def send_digest(ctx) -> dict:
    return await run_maintenance_task("send_digest", get_store())


async def _heartbeat_loop() -> None:
    while True:
        await set_worker_heartbeat()
        await asyncio.sleep(HEARTBEAT_INTERVAL_S)


async def _startup(ctx) -> None:
    configure_logging()
    ctx["heartbeat_task"] = asyncio.create_task(_heartbeat_loop())


async def _shutdown(ctx) -> None:
    # Cancel the heartbeat task to avoid dangling coroutines on exit.
    task = ctx.get("heartbeat_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.trigger_queue_name
    # Triggers are at-most-once; handlers are idempotent instead of retried.
    max_tries = 1
    timezone = ZoneInfo(settings.quota_timezone)
    functions = [process_change]
    cron_jobs = [
        cron(reset_quotas, hour={settings.quota_reset_hour}, minute={settings.quota_reset_minute}),
        cron(purge_inactive, hour={settings.purge_hour}, minute={settings.purge_minute}),
        cron(send_digest, hour={settings.digest_hour}, minute={settings.digest_minute}),
    ]
    on_startup = _startup
    on_shutdown = _shutdown

