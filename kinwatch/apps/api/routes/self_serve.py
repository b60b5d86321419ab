from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from kinwatch.apps.api.deps import get_caller, get_identity_directory, get_store
from kinwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kinwatch.apps.api.response import RpcResult, SuccessEnvelope, success_response
from kinwatch.persistence.store import KeyedStore
from kinwatch.services import self_serve
from kinwatch.services.accounts import provision_account
from kinwatch.services.auth.identity import IdentityDirectory
from kinwatch.services.auth.principals import CallerContext, require_caller


router = APIRouter(prefix="/self", tags=["self-serve"], responses=DEFAULT_ERROR_RESPONSES)


class LocationUpdateRequest(BaseModel):
    # Every field is optional; missing values are stored as "Unknown".
    ip: str | None = None
    city: str | None = None
    country: str | None = None
    device: str | None = None
    browser: str | None = None
    lat: float | None = None
    lon: float | None = None


class SignupRequest(BaseModel):
    display_name: str | None = None


class ProfileResponse(BaseModel):
    uid: str
    profile: dict[str, Any]


@router.post("/account", response_model=SuccessEnvelope[ProfileResponse])
async def sign_up(
    request: Request,
    body: SignupRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
    identities: IdentityDirectory = Depends(get_identity_directory),
) -> dict:
    # Stands in for the identity provider's user-created hook.
    uid = require_caller(caller)
    email = caller.email if caller else None
    if await identities.get_user(uid) is None:
        await identities.create_user(uid, email=email, display_name=body.display_name)
    profile = await provision_account(store, uid, email=email, display_name=body.display_name)
    return success_response(request=request, data=ProfileResponse(uid=uid, profile=profile))


@router.post("/location", response_model=SuccessEnvelope[RpcResult])
async def update_user_location(
    request: Request,
    body: LocationUpdateRequest,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> dict:
    result = await self_serve.update_user_location(
        store,
        caller,
        ip=body.ip,
        city=body.city,
        country=body.country,
        device=body.device,
        browser=body.browser,
        lat=body.lat,
        lon=body.lon,
    )
    return success_response(request=request, data=result.as_dict())


@router.delete("/account", response_model=SuccessEnvelope[RpcResult])
async def delete_my_account(
    request: Request,
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
    identities: IdentityDirectory = Depends(get_identity_directory),
) -> dict:
    result = await self_serve.delete_my_account(store, caller, identities=identities)
    return success_response(request=request, data=result.as_dict())
