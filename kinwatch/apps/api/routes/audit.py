from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from kinwatch.apps.api.deps import get_store, require_admin
from kinwatch.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from kinwatch.apps.api.response import SuccessEnvelope, success_response
from kinwatch.core.config import get_settings
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.audit import list_audit_entries


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditEntryResponse(BaseModel):
    id: str
    action: str
    actor: str
    timestamp: int
    metadata: dict[str, Any] | None = None
    hash: str | None = None
    verified: bool


class AuditEntriesPage(BaseModel):
    items: list[AuditEntryResponse]


@router.get("/entries", response_model=SuccessEnvelope[AuditEntriesPage])
async def list_entries(
    request: Request,
    action: str | None = None,
    limit: int = Query(default=100, ge=1),
    _admin_uid: str = Depends(require_admin),
    store: KeyedStore = Depends(get_store),
) -> dict:
    # Newest first, clamped to the configured maximum page size.
    bounded = min(limit, get_settings().audit_list_max_limit)
    entries = await list_audit_entries(store, limit=bounded, action=action)
    items = [AuditEntryResponse.model_validate(entry) for entry in entries]
    return success_response(request=request, data=AuditEntriesPage(items=items))
