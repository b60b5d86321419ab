from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel

from kinwatch.apps.api.deps import get_caller, get_store
from kinwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kinwatch.apps.api.response import SuccessEnvelope, success_response
from kinwatch.core.errors import InvalidArgumentError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.auth.principals import CallerContext, require_caller
from kinwatch.services.ingestion import parse_kind
from kinwatch.services.trigger_queue import enqueue_change
from kinwatch.services.triggers import ChangeEvent


router = APIRouter(prefix="/devices", tags=["telemetry"], responses=DEFAULT_ERROR_RESPONSES)


class UploadAccepted(BaseModel):
    record_id: str
    path: str
    trigger_job_id: str


class StatusAccepted(BaseModel):
    path: str
    trigger_job_id: str


def _validate_device_key(device_key: str) -> None:
    if device_key in paths.RESERVED_ACCOUNT_CHILDREN:
        raise InvalidArgumentError(f"{device_key} is not a device key.")


@router.put("/{device_key}/status", response_model=SuccessEnvelope[StatusAccepted])
async def report_device_status(
    request: Request,
    device_key: str,
    status: dict[str, Any] = Body(...),
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    uid = require_caller(caller)
    _validate_device_key(device_key)
    path = paths.device_status(uid, device_key)
    before = await store.get(path)
    await store.set(path, status)
    job_id = await enqueue_change(store, ChangeEvent(path=path, before=before, after=status))
    return success_response(request=request, data=StatusAccepted(path=path, trigger_job_id=job_id))


@router.post("/{device_key}/{kind}", response_model=SuccessEnvelope[UploadAccepted])
async def upload_record(
    request: Request,
    device_key: str,
    kind: str,
    record: dict[str, Any] = Body(...),
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    """Append a telemetry record the way a device agent does, then fire the ingestion trigger.

    The record lands before policy runs; a denied upload is removed again by the
    trigger rather than rejected here.
    """
    uid = require_caller(caller)
    _validate_device_key(device_key)
    if parse_kind(kind) is None:
        raise InvalidArgumentError(f"Unknown telemetry kind {kind!r}.")
    record_id = await store.push(paths.telemetry(uid, device_key, kind), record)
    path = paths.telemetry(uid, device_key, kind, record_id)
    job_id = await enqueue_change(store, ChangeEvent(path=path, before=None, after=record))
    return success_response(
        request=request,
        data=UploadAccepted(record_id=record_id, path=path, trigger_job_id=job_id),
    )
