from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Literal

from kinwatch.core.errors import StoreError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)

AlertLevel = Literal["CRITICAL", "WARNING", "INFO"]


def build_notification(level: AlertLevel, message: str, data: dict[str, Any] | None, now: datetime | None) -> dict[str, Any]:
    timestamp = int((now or datetime.now(timezone.utc)).timestamp() * 1000)
    return {
        "type": level,
        "message": message,
        "timestamp": timestamp,
        "data": data or {},
        "read": False,
    }


async def _deliver(
    store: KeyedStore,
    *,
    target_path: str,
    level: AlertLevel,
    message: str,
    data: dict[str, Any] | None,
    key: str | None,
    now: datetime | None,
) -> bool:
    # Alerts are best-effort: a failed sink write is logged and reported, never raised.
    notification = build_notification(level, message, data, now)
    try:
        if key:
            # Keyed writes make redelivery of the same trigger idempotent.
            await store.set(paths.join(target_path, key), notification)
        else:
            await store.push(target_path, notification)
    except StoreError as exc:
        logger.warning("notification_write_failed target=%s level=%s", target_path, level, exc_info=exc)
        return False
    return True


async def notify_account(
    store: KeyedStore,
    uid: str,
    *,
    level: AlertLevel,
    message: str,
    data: dict[str, Any] | None = None,
    key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Write an alert into the account's own notification inbox."""
    return await _deliver(
        store,
        target_path=paths.notifications(uid),
        level=level,
        message=message,
        data=data,
        key=key,
        now=now,
    )


async def notify_admins(
    store: KeyedStore,
    *,
    level: AlertLevel,
    message: str,
    data: dict[str, Any] | None = None,
    key: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Write an alert into the admin-facing alert feed."""
    return await _deliver(
        store,
        target_path=paths.admin_alerts(),
        level=level,
        message=message,
        data=data,
        key=key,
        now=now,
    )
