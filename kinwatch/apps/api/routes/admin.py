from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from kinwatch.apps.api.deps import get_caller, get_identity_directory, get_store, require_admin
from kinwatch.apps.api.openapi import COMMAND_ERROR_RESPONSES, DEFAULT_ERROR_RESPONSES
from kinwatch.apps.api.response import RpcResult, SuccessEnvelope, success_response
from kinwatch.persistence import paths
from kinwatch.persistence.repos.commands import get_command_history
from kinwatch.persistence.store import KeyedStore
from kinwatch.services import admin_actions
from kinwatch.services.auth.identity import IdentityDirectory
from kinwatch.services.auth.principals import CallerContext
from kinwatch.services.commands import get_command_dispatcher


router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)

VAULT_BUCKETS = ("Banking_Logs", "Social_Logs", "Danger_Logs")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SendCommandRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")
    device_key: str = Field(alias="deviceKey")
    command_type: str = Field(alias="commandType")
    payload: dict[str, Any] | None = None


class SendCommandResult(RpcResult):
    command_id: str | None = None


class UpdateLimitsRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")
    photo_limit: int | None = Field(default=None, alias="photoLimit")
    video_limit: int | None = Field(default=None, alias="videoLimit")
    audio_limit: int | None = Field(default=None, alias="audioLimit")
    limit: int | None = None


class TargetRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")


class ChangePlanRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")
    new_plan: str = Field(alias="newPlan")


class ClearChatRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")
    device_key: str | None = Field(default=None, alias="deviceKey")


class DeleteDeviceRequest(_CamelModel):
    parent_uid: str = Field(alias="parentUid")
    device_key: str | None = Field(default=None, alias="deviceKey")


class FreezeRequest(_CamelModel):
    target_uid: str = Field(alias="targetUid")
    # Left untyped so a non-boolean reaches the INVALID_ARGUMENT check instead of being coerced.
    is_frozen: Any = Field(alias="isFrozen")


class VaultListing(BaseModel):
    uid: str
    buckets: dict[str, dict[str, Any]]


class CommandHistoryListing(BaseModel):
    uid: str
    device_key: str
    items: list[dict[str, Any]]


@router.post(
    "/commands",
    response_model=SuccessEnvelope[SendCommandResult],
    responses=COMMAND_ERROR_RESPONSES,
)
async def send_remote_command(
    request: Request,
    body: SendCommandRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await get_command_dispatcher().send_command(
        store,
        caller,
        target_uid=body.target_uid,
        device_key=body.device_key,
        command_type=body.command_type,
        payload=body.payload,
    )
    return success_response(request=request, data=SendCommandResult(**result.as_dict()))


@router.post("/limits", response_model=SuccessEnvelope[RpcResult])
async def update_user_limits(
    request: Request,
    body: UpdateLimitsRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await admin_actions.update_user_limits(
        store,
        caller,
        target_uid=body.target_uid,
        photo_limit=body.photo_limit,
        video_limit=body.video_limit,
        audio_limit=body.audio_limit,
        limit=body.limit,
    )
    return success_response(request=request, data=result.as_dict())


@router.post("/ghost-delete", response_model=SuccessEnvelope[RpcResult])
async def manual_ghost_delete(
    request: Request,
    body: TargetRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
    identities: IdentityDirectory = Depends(get_identity_directory),
) -> dict:
    result = await admin_actions.manual_ghost_delete(
        store,
        caller,
        target_uid=body.target_uid,
        identities=identities,
    )
    return success_response(request=request, data=result.as_dict())


@router.post("/plan", response_model=SuccessEnvelope[RpcResult])
async def change_user_plan(
    request: Request,
    body: ChangePlanRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await admin_actions.change_user_plan(
        store,
        caller,
        target_uid=body.target_uid,
        new_plan=body.new_plan,
    )
    return success_response(request=request, data=result.as_dict())


@router.post("/chat/clear", response_model=SuccessEnvelope[RpcResult])
async def clear_user_chat(
    request: Request,
    body: ClearChatRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await admin_actions.clear_user_chat(
        store,
        caller,
        target_uid=body.target_uid,
        device_key=body.device_key or "",
    )
    return success_response(request=request, data=result.as_dict())


@router.post("/devices/delete", response_model=SuccessEnvelope[RpcResult])
async def delete_child_device(
    request: Request,
    body: DeleteDeviceRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await admin_actions.delete_child_device(
        store,
        caller,
        parent_uid=body.parent_uid,
        device_key=body.device_key or "",
    )
    return success_response(request=request, data=result.as_dict())


@router.post("/freeze", response_model=SuccessEnvelope[RpcResult])
async def freeze_user_account(
    request: Request,
    body: FreezeRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await admin_actions.freeze_user_account(
        store,
        caller,
        target_uid=body.target_uid,
        is_frozen=body.is_frozen,
    )
    return success_response(request=request, data=result.as_dict())


@router.get("/accounts/{uid}/vault", response_model=SuccessEnvelope[VaultListing])
async def list_vault(
    request: Request,
    uid: str,
    _admin_uid: str = Depends(require_admin),
    store: KeyedStore = Depends(get_store),
) -> dict:
    buckets: dict[str, dict[str, Any]] = {}
    for bucket in VAULT_BUCKETS:
        entries = await store.get(paths.vault(uid, bucket))
        buckets[bucket] = entries if isinstance(entries, dict) else {}
    return success_response(request=request, data=VaultListing(uid=uid, buckets=buckets))


@router.get(
    "/accounts/{uid}/devices/{device_key}/commands",
    response_model=SuccessEnvelope[CommandHistoryListing],
)
async def list_command_history(
    request: Request,
    uid: str,
    device_key: str,
    _admin_uid: str = Depends(require_admin),
    store: KeyedStore = Depends(get_store),
) -> dict:
    history = await get_command_history(store, uid, device_key)
    items = [{"id": command_id, **entry} for command_id, entry in history.items() if isinstance(entry, dict)]
    # Newest first for the dashboard.
    items.sort(key=lambda item: item.get("timestamp") or 0, reverse=True)
    return success_response(
        request=request,
        data=CommandHistoryListing(uid=uid, device_key=device_key, items=items),
    )
