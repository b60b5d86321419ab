from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Literal
from zoneinfo import ZoneInfo

from kinwatch.core.config import SYSTEM_ACTOR, Settings, get_settings
from kinwatch.core.errors import StoreError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.accounts import purge_account_data
from kinwatch.services.alert_sink import notify_account
from kinwatch.services.audit import ACTION_GHOST_DELETE, record_system_action
from kinwatch.services.auth.identity import IdentityDirectory, StoreIdentityDirectory
from kinwatch.services.quota import MediaType, QuotaService, get_quota_service


logger = logging.getLogger(__name__)


MaintenanceTask = Literal[
    "reset_quotas",
    "purge_inactive",
    "send_digest",
]

DELETION_WARNING_MESSAGE = (
    "Account Termination Warning: Your account will be deleted in 24 hours due to inactivity. "
    "Please log in to confirm your account."
)


@dataclass
class PurgeReport:
    warned: int = 0
    deleted: int = 0
    rescued: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


async def reset_all_quotas(
    store: KeyedStore,
    *,
    quota: QuotaService | None = None,
    now: datetime | None = None,
) -> int:
    """Blanket daily reset of every account's media counters.

    Independent of the lazy rollover in ``check_and_reset``; it keeps counters
    fresh for accounts with no activity. A reset racing a live increment is
    last-write-wins, which is the intended outcome for "today".
    """
    service = quota or get_quota_service()
    today = service.today(now)
    reset = 0
    for uid in await store.child_keys(paths.ACCOUNTS_ROOT):
        updates: dict[str, Any] = {}
        for media in MediaType:
            updates[f"{media.value}/count"] = 0
            updates[f"{media.value}/date"] = today
        try:
            if not await store.exists(paths.profile(uid)):
                continue
            await store.update(paths.limits(uid), updates)
        except StoreError as exc:
            logger.warning("quota_reset_failed uid=%s", uid, exc_info=exc)
            continue
        reset += 1
    logger.info("quota_reset_completed accounts=%s date=%s", reset, today)
    return reset


def has_activity(account_node: dict[str, Any]) -> bool:
    # Location data or a device status report anywhere under the account counts as activity.
    profile = account_node.get(paths.PROFILE)
    if isinstance(profile, dict) and profile.get("location_info"):
        return True
    if account_node.get(paths.DEVICE_STATUS):
        return True
    for key, child in account_node.items():
        if key in paths.RESERVED_ACCOUNT_CHILDREN or not isinstance(child, dict):
            continue
        if child.get(paths.DEVICE_STATUS):
            return True
        location = child.get("location")
        if isinstance(location, dict) and location.get("data"):
            return True
    return False


async def purge_inactive_accounts(
    store: KeyedStore,
    *,
    identities: IdentityDirectory | None = None,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> PurgeReport:
    """Warn, then delete, accounts that never reported any activity.

    Per account: active -> warned (stamp written once) -> deleted once the
    warning is older than the warning window. The inactivity criteria are
    re-evaluated on every run, so an account that reports activity after being
    warned is skipped; its warning stamp is left in place.
    """
    resolved = settings or get_settings()
    directory = identities or StoreIdentityDirectory(store)
    current = now or _utc_now()
    now_ms = _ms(current)
    cutoff_ms = _ms(current - timedelta(days=resolved.purge_inactive_after_days))
    window_ms = resolved.purge_warning_window_hours * 3600 * 1000
    report = PurgeReport()

    candidates = await store.query(
        paths.ACCOUNTS_ROOT,
        order_by_child=f"{paths.PROFILE}/created_at",
        start_at=0,
        end_at=cutoff_ms,
    )
    for uid, node in candidates:
        if not isinstance(node, dict):
            continue
        profile = node.get(paths.PROFILE) or {}
        warned_at = profile.get("deletion_warning_sent")
        if has_activity(node):
            if warned_at:
                report.rescued += 1
                logger.info("inactive_purge_rescued uid=%s warned_at=%s", uid, warned_at)
            continue
        try:
            if not warned_at:
                if await _warn(store, uid, now_ms=now_ms, now=current):
                    report.warned += 1
            elif isinstance(warned_at, (int, float)) and now_ms - warned_at > window_ms:
                await _ghost_delete(store, directory, uid, now=current)
                report.deleted += 1
        except StoreError as exc:
            report.failed += 1
            logger.warning("inactive_purge_failed uid=%s", uid, exc_info=exc)

    logger.info(
        "inactive_purge_completed warned=%s deleted=%s rescued=%s failed=%s",
        report.warned,
        report.deleted,
        report.rescued,
        report.failed,
    )
    return report


async def _warn(store: KeyedStore, uid: str, *, now_ms: int, now: datetime) -> bool:
    # Stamp only if absent; a concurrent run that already stamped wins and we skip the notice.
    stamped = await store.transaction(
        paths.deletion_warning(uid),
        lambda existing: existing if existing else now_ms,
    )
    if stamped != now_ms:
        return False
    await notify_account(
        store,
        uid,
        level="WARNING",
        message=DELETION_WARNING_MESSAGE,
        key="deletion-warning",
        now=now,
    )
    logger.info("inactive_account_warned uid=%s", uid)
    return True


async def _ghost_delete(store: KeyedStore, directory: IdentityDirectory, uid: str, *, now: datetime) -> None:
    await directory.delete_user(uid)
    await purge_account_data(store, uid)
    await record_system_action(
        store,
        action=ACTION_GHOST_DELETE,
        actor_id=SYSTEM_ACTOR,
        metadata={"uid": uid},
        now=now,
        best_effort=True,
    )
    logger.info("inactive_account_deleted uid=%s", uid)


async def send_activity_digest(
    store: KeyedStore,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> int:
    # Notify every account on a digest plan; one failed account never stops the batch.
    resolved = settings or get_settings()
    local_now = (now or _utc_now()).astimezone(ZoneInfo(resolved.quota_timezone))
    day_label = local_now.strftime("%a %b %d %Y")
    sent = 0
    for plan in resolved.digest_plans:
        try:
            rows = await store.query(paths.REPLICA_ROOT, order_by_child="account_type", equal_to=plan)
        except StoreError as exc:
            logger.warning("digest_lookup_failed plan=%s", plan, exc_info=exc)
            continue
        for uid, _entry in rows:
            delivered = await notify_account(
                store,
                uid,
                level="INFO",
                message=f"Daily Summary Report: Here's your activity summary for {day_label}",
                key=f"digest-{local_now.date().isoformat()}",
                now=now,
            )
            if delivered:
                sent += 1
    logger.info("digest_completed sent=%s", sent)
    return sent


async def run_maintenance_task(
    task: MaintenanceTask,
    store: KeyedStore,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    # Shared entry point for the cron worker and the CLI.
    if task == "reset_quotas":
        return {"reset": await reset_all_quotas(store, now=now)}
    if task == "purge_inactive":
        return (await purge_inactive_accounts(store, now=now)).as_dict()
    if task == "send_digest":
        return {"sent": await send_activity_digest(store, now=now)}
    raise ValueError(f"Unknown maintenance task {task!r}")
