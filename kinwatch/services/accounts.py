from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.alert_sink import notify_account
from kinwatch.services.quota import QuotaService, get_quota_service
from kinwatch.services.replica import sync_read_replica


logger = logging.getLogger(__name__)

ACCOUNT_PLANS = ("free", "pro", "enterprise")
DEFAULT_PLAN = "free"


def default_profile(
    *,
    email: str | None,
    display_name: str | None,
    quota: QuotaService,
    now: datetime,
) -> dict[str, Any]:
    return {
        "email": email,
        "name": display_name or "New User",
        "account_type": DEFAULT_PLAN,
        "created_at": int(now.timestamp() * 1000),
        "status": "active",
        "limits": quota.default_limits(),
        "security": {"warnings": 0, "is_frozen": False},
    }


async def provision_account(
    store: KeyedStore,
    uid: str,
    *,
    email: str | None,
    display_name: str | None = None,
    quota: QuotaService | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create the default profile for a newly signed-up account.

    Writes the profile, its replica entry and a welcome notification. Running it
    again for an account that already has a profile leaves the profile alone.
    """
    resolved_now = now or datetime.now(timezone.utc)
    existing = await store.get(paths.profile(uid))
    if isinstance(existing, dict):
        logger.info("account_already_provisioned uid=%s", uid)
        return existing

    profile = default_profile(
        email=email,
        display_name=display_name,
        quota=quota or get_quota_service(),
        now=resolved_now,
    )
    await store.set(paths.profile(uid), profile)
    await sync_read_replica(store, uid, profile, now=resolved_now)
    await notify_account(
        store,
        uid,
        level="INFO",
        message="Welcome to Kinwatch! You are on the Free Plan.",
        key="welcome",
        now=resolved_now,
    )
    logger.info("account_provisioned uid=%s", uid)
    return profile


async def purge_account_data(store: KeyedStore, uid: str) -> None:
    # One atomic multi-path update removes every subtree owned by the account.
    await store.update(
        "",
        {
            paths.account(uid): None,
            paths.replica(uid): None,
            paths.vault(uid): None,
            paths.dead_letter(uid): None,
        },
    )
    logger.info("account_data_purged uid=%s", uid)
