from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from kinwatch.core.errors import StoreError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)


def project_profile(uid: str, profile: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    # Fixed, small projection kept in the lightweight index.
    return {
        "id": uid,
        "email": profile.get("email") or "Unknown",
        "name": profile.get("name") or "Unknown",
        "account_type": profile.get("account_type") or "free",
        "_synced_at": int((now or datetime.now(timezone.utc)).timestamp() * 1000),
    }


async def sync_read_replica(
    store: KeyedStore,
    uid: str,
    profile: dict[str, Any] | None,
    *,
    now: datetime | None = None,
) -> bool:
    """Mirror a profile write into ``AccountIndex/{uid}``.

    A missing profile removes the index entry. Failures are logged and reported
    through the return value only; the profile write that triggered the sync has
    already happened and is never rolled back.
    """
    try:
        if not isinstance(profile, dict):
            await store.remove(paths.replica(uid))
            logger.info("replica_removed uid=%s", uid)
        else:
            await store.set(paths.replica(uid), project_profile(uid, profile, now))
    except StoreError as exc:
        logger.warning("replica_sync_failed uid=%s", uid, exc_info=exc)
        return False
    return True
