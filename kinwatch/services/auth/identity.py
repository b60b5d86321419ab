from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Protocol

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)


class IdentityDirectory(Protocol):
    # Boundary to the authentication provider that owns sign-in identities.

    async def create_user(self, uid: str, *, email: str | None, display_name: str | None) -> dict[str, Any]: ...

    async def get_user(self, uid: str) -> dict[str, Any] | None: ...

    async def delete_user(self, uid: str) -> bool: ...


class StoreIdentityDirectory:
    """Identity records kept in the keyed store under auth_users/{uid}."""

    def __init__(self, store: KeyedStore) -> None:
        self._store = store

    async def create_user(self, uid: str, *, email: str | None, display_name: str | None) -> dict[str, Any]:
        record = {
            "uid": uid,
            "email": email,
            "display_name": display_name,
            "created_at": int(datetime.now(timezone.utc).timestamp() * 1000),
        }
        await self._store.set(paths.identity(uid), record)
        return record

    async def get_user(self, uid: str) -> dict[str, Any] | None:
        record = await self._store.get(paths.identity(uid))
        return record if isinstance(record, dict) else None

    async def delete_user(self, uid: str) -> bool:
        # Unknown identities are not an error; returns whether one existed.
        existed = await self._store.exists(paths.identity(uid))
        if existed:
            await self._store.remove(paths.identity(uid))
        else:
            logger.info("identity_delete_missing uid=%s", uid)
        return existed
