"""Admin-only account management operations.

Each operation verifies the caller is an admin before touching anything, then
performs its primary write and finally records a best-effort audit entry.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from kinwatch.core.errors import InvalidArgumentError, NotFoundError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.accounts import ACCOUNT_PLANS, purge_account_data
from kinwatch.services.alert_sink import notify_account
from kinwatch.services.audit import (
    ACTION_ACCOUNT_FROZEN,
    ACTION_ACCOUNT_UNFROZEN,
    ACTION_CHAT_CLEARED,
    ACTION_DEVICE_DELETED,
    ACTION_LIMIT_UPDATED,
    ACTION_MANUAL_GHOST_DELETE,
    ACTION_PLAN_CHANGED,
    record_system_action,
)
from kinwatch.services.auth.identity import IdentityDirectory, StoreIdentityDirectory
from kinwatch.services.auth.principals import CallerContext, verify_admin
from kinwatch.services.quota import MediaType
from kinwatch.services.replica import sync_read_replica


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    success: bool
    message: str

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message}


def _require(value: str | None, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{name} is required.")
    return value


def _parse_limit(value: Any, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidArgumentError(f"{name} must be a non-negative integer.")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{name} must be a non-negative integer.") from exc
    if parsed < 0:
        raise InvalidArgumentError(f"{name} must be a non-negative integer.")
    return parsed


async def _require_profile(store: KeyedStore, uid: str) -> dict[str, Any]:
    profile = await store.get(paths.profile(uid))
    if not isinstance(profile, dict):
        raise NotFoundError(f"Account {uid} not found.")
    return profile


async def update_user_limits(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    target_uid: str,
    photo_limit: Any = None,
    video_limit: Any = None,
    audio_limit: Any = None,
    limit: Any = None,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(target_uid, "targetUid")
    blanket = _parse_limit(limit, "limit")
    requested = {
        MediaType.PHOTOS: _parse_limit(photo_limit, "photoLimit"),
        MediaType.VIDEOS: _parse_limit(video_limit, "videoLimit"),
        MediaType.AUDIO: _parse_limit(audio_limit, "audioLimit"),
    }
    # The blanket limit applies to every media type, but only when no per-type value was given.
    if all(value is None for value in requested.values()):
        requested = dict.fromkeys(requested, blanket)
    updates = {f"{media.value}/max": value for media, value in requested.items() if value is not None}
    if not updates:
        raise InvalidArgumentError("At least one limit must be provided.")
    await _require_profile(store, target_uid)

    await store.update(paths.limits(target_uid), updates)
    await record_system_action(
        store,
        action=ACTION_LIMIT_UPDATED,
        actor_id=admin_uid,
        metadata={"targetUid": target_uid, "limits": {key.split("/")[0]: value for key, value in updates.items()}},
        now=now,
        best_effort=True,
    )
    logger.info("limits_updated admin=%s target=%s limits=%s", admin_uid, target_uid, updates)
    return ActionResult(success=True, message="User limits updated successfully.")


async def manual_ghost_delete(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    target_uid: str,
    identities: IdentityDirectory | None = None,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(target_uid, "targetUid")
    directory = identities or StoreIdentityDirectory(store)
    identity_existed = await directory.delete_user(target_uid)
    await purge_account_data(store, target_uid)
    await record_system_action(
        store,
        action=ACTION_MANUAL_GHOST_DELETE,
        actor_id=admin_uid,
        metadata={"targetUid": target_uid, "identityExisted": identity_existed},
        now=now,
        best_effort=True,
    )
    return ActionResult(success=True, message=f"User {target_uid} deleted successfully.")


async def change_user_plan(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    target_uid: str,
    new_plan: str,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(target_uid, "targetUid")
    if new_plan not in ACCOUNT_PLANS:
        raise InvalidArgumentError(
            "Invalid plan type.",
            details={"allowed": list(ACCOUNT_PLANS)},
        )
    profile = await _require_profile(store, target_uid)
    previous_plan = profile.get("account_type")

    await store.update(paths.profile(target_uid), {"account_type": new_plan})
    await sync_read_replica(store, target_uid, {**profile, "account_type": new_plan}, now=now)
    await record_system_action(
        store,
        action=ACTION_PLAN_CHANGED,
        actor_id=admin_uid,
        metadata={"targetUid": target_uid, "from": previous_plan, "to": new_plan},
        now=now,
        best_effort=True,
    )
    await notify_account(
        store,
        target_uid,
        level="INFO",
        message=f"Your plan has been changed to {new_plan.upper()} by the administrator.",
        data={"plan": new_plan},
        now=now,
    )
    return ActionResult(success=True, message=f"Plan updated to {new_plan}.")


async def clear_user_chat(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    target_uid: str,
    device_key: str,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(target_uid, "targetUid")
    _require(device_key, "deviceKey")
    await store.remove(paths.chat_messages(target_uid, device_key))
    await record_system_action(
        store,
        action=ACTION_CHAT_CLEARED,
        actor_id=admin_uid,
        metadata={"targetUid": target_uid, "deviceKey": device_key},
        now=now,
        best_effort=True,
    )
    return ActionResult(success=True, message="Chat history cleared.")


async def delete_child_device(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    parent_uid: str,
    device_key: str,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(parent_uid, "parentUid")
    _require(device_key, "deviceKey")
    if device_key in paths.RESERVED_ACCOUNT_CHILDREN:
        raise InvalidArgumentError(f"{device_key} is not a device key.")
    await store.remove(paths.device(parent_uid, device_key))
    await record_system_action(
        store,
        action=ACTION_DEVICE_DELETED,
        actor_id=admin_uid,
        metadata={"targetUid": parent_uid, "deviceKey": device_key},
        now=now,
        best_effort=True,
    )
    return ActionResult(success=True, message="Device deleted successfully.")


async def freeze_user_account(
    store: KeyedStore,
    caller: CallerContext | None,
    *,
    target_uid: str,
    is_frozen: Any,
    now: datetime | None = None,
) -> ActionResult:
    admin_uid = await verify_admin(store, caller)
    _require(target_uid, "targetUid")
    if not isinstance(is_frozen, bool):
        raise InvalidArgumentError("isFrozen must be a boolean.")
    await _require_profile(store, target_uid)

    await store.update(paths.security(target_uid), {"is_frozen": is_frozen})
    await record_system_action(
        store,
        action=ACTION_ACCOUNT_FROZEN if is_frozen else ACTION_ACCOUNT_UNFROZEN,
        actor_id=admin_uid,
        metadata={"targetUid": target_uid},
        now=now,
        best_effort=True,
    )
    logger.info("account_freeze_changed admin=%s target=%s frozen=%s", admin_uid, target_uid, is_frozen)
    return ActionResult(
        success=True,
        message=f"Account {'frozen' if is_frozen else 'unfrozen'} successfully.",
    )
