from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.accounts import purge_account_data
from kinwatch.services.admin_actions import ActionResult
from kinwatch.services.audit import ACTION_ACCOUNT_SELF_DELETED, record_system_action
from kinwatch.services.auth.identity import IdentityDirectory, StoreIdentityDirectory
from kinwatch.services.auth.principals import CallerContext, require_caller


logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"
DEFAULT_BROWSER = "Android App"


def _text_or_unknown(value: Any, fallback: str = UNKNOWN) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def _coordinate(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def build_login_entry(
    *,
    ip: Any,
    city: Any,
    country: Any,
    device: Any,
    browser: Any,
    lat: Any,
    lon: Any,
    now: datetime,
) -> dict[str, Any]:
    # Missing fields are stored as "Unknown" so the dashboards never render blanks.
    return {
        "ip": _text_or_unknown(ip),
        "city": _text_or_unknown(city),
        "country": _text_or_unknown(country),
        "device": _text_or_unknown(device),
        "browser": _text_or_unknown(browser, DEFAULT_BROWSER),
        "lat": _coordinate(lat),
        "lon": _coordinate(lon),
        "timestamp": int(now.timestamp() * 1000),
    }


async def update_user_location(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    ip: Any = None,
    city: Any = None,
    country: Any = None,
    device: Any = None,
    browser: Any = None,
    lat: Any = None,
    lon: Any = None,
    now: datetime | None = None,
) -> ActionResult:
    uid = require_caller(caller)
    entry = build_login_entry(
        ip=ip,
        city=city,
        country=country,
        device=device,
        browser=browser,
        lat=lat,
        lon=lon,
        now=now or datetime.now(timezone.utc),
    )
    await store.push(paths.login_history(uid), entry)
    snapshot = {key: value for key, value in entry.items() if key != "timestamp"}
    await store.set(paths.location_info(uid), {**snapshot, "lastLoginTime": entry["timestamp"]})
    logger.info("location_updated uid=%s city=%s country=%s", uid, entry["city"], entry["country"])
    return ActionResult(success=True, message="Location updated successfully.")


async def delete_my_account(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    identities: IdentityDirectory | None = None,
    now: datetime | None = None,
) -> ActionResult:
    uid = require_caller(caller)
    directory = identities or StoreIdentityDirectory(store)
    await directory.delete_user(uid)
    await purge_account_data(store, uid)
    await record_system_action(
        store,
        action=ACTION_ACCOUNT_SELF_DELETED,
        actor_id=uid,
        metadata={"targetUid": uid},
        now=now,
        best_effort=True,
    )
    return ActionResult(success=True, message="Account deleted successfully.")
