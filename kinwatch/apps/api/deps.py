from __future__ import annotations

import logging

from fastapi import Depends, Header

from kinwatch.core.config import get_settings
from kinwatch.core.errors import UnauthenticatedError
from kinwatch.persistence.factory import get_store as _get_process_store
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.auth.identity import IdentityDirectory, StoreIdentityDirectory
from kinwatch.services.auth.principals import CallerContext, decode_bearer_token, verify_admin


logger = logging.getLogger(__name__)


def get_store() -> KeyedStore:
    # Handlers receive the store explicitly; tests override this dependency.
    return _get_process_store()


def get_identity_directory(store: KeyedStore = Depends(get_store)) -> IdentityDirectory:
    return StoreIdentityDirectory(store)


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Enforce Bearer token format; an absent header means an anonymous caller.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthenticatedError("Missing or invalid bearer token")
    return parts[1]


def get_caller(authorization: str | None = Header(default=None)) -> CallerContext | None:
    """Resolve the caller from the bearer token.

    Anonymous requests resolve to ``None`` so each operation decides how to
    reject them; a malformed or expired token is rejected here.
    """
    token = _parse_bearer_token(authorization)
    if token is None:
        return None
    return decode_bearer_token(token, get_settings())


async def require_admin(
    caller: CallerContext | None = Depends(get_caller),
    store: KeyedStore = Depends(get_store),
) -> str:
    # Used by read-only admin endpoints that have no service-level check of their own.
    return await verify_admin(store, caller)
