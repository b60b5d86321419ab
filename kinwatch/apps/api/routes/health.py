from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from kinwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kinwatch.apps.api.response import SuccessEnvelope, success_response
from kinwatch.core.config import get_settings
from kinwatch.services.trigger_queue import get_queue_depth, get_worker_heartbeat

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    region: str
    trigger_mode: str
    queue_depth: int | None = None
    worker_heartbeat_at: str | None = None


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    # Degraded Redis shows up as a null queue depth rather than a failed probe.
    settings = get_settings()
    heartbeat = await get_worker_heartbeat()
    payload = HealthResponse(
        status="ok",
        region=settings.region,
        trigger_mode=settings.trigger_execution_mode,
        queue_depth=await get_queue_depth(),
        worker_heartbeat_at=heartbeat.isoformat() if heartbeat else None,
    )
    return success_response(request=request, data=payload)
