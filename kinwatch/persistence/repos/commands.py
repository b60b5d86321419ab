from __future__ import annotations

import logging
from typing import Any

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)

COMMAND_STATUSES = ("pending", "executing", "success", "failed")


async def append_command(store: KeyedStore, uid: str, device_key: str, record: dict[str, Any]) -> str:
    # Only the authoritative history log is ever written.
    return await store.push(paths.command_history(uid, device_key), record)


async def get_command_history(store: KeyedStore, uid: str, device_key: str) -> dict[str, Any]:
    """Return the device's command log keyed by command id.

    Reads the authoritative CommandHistory log and falls back to the legacy
    ``commands`` path only when the authoritative log is empty. This is the
    single place the legacy path is consulted; drop the fallback once every
    device has migrated.
    """
    history = await store.get(paths.command_history(uid, device_key))
    if isinstance(history, dict) and history:
        return history
    legacy = await store.get(paths.legacy_commands(uid, device_key))
    if isinstance(legacy, dict) and legacy:
        logger.info("command_history_legacy_fallback uid=%s device=%s entries=%s", uid, device_key, len(legacy))
        return legacy
    return {}
