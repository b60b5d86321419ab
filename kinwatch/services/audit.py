from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import logging
from typing import Any

from kinwatch.core.errors import StoreError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "text", "content"]
_REDACTED_VALUE = "[REDACTED]"

# Stable action names written to the system audit trail.
ACTION_COMMAND_SENT = "COMMAND_SENT"
ACTION_COMMAND_BLOCKED = "COMMAND_BLOCKED"
ACTION_UPLOAD_BLOCKED = "UPLOAD_BLOCKED"
ACTION_LIMIT_UPDATED = "LIMIT_UPDATED"
ACTION_PLAN_CHANGED = "PLAN_CHANGED"
ACTION_CHAT_CLEARED = "CHAT_CLEARED"
ACTION_DEVICE_DELETED = "DEVICE_DELETED"
ACTION_ACCOUNT_FROZEN = "ACCOUNT_FROZEN"
ACTION_ACCOUNT_UNFROZEN = "ACCOUNT_UNFROZEN"
ACTION_MANUAL_GHOST_DELETE = "MANUAL_GHOST_DELETE"
ACTION_GHOST_DELETE = "GHOST_DELETE"
ACTION_ACCOUNT_SELF_DELETED = "ACCOUNT_SELF_DELETED"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def integrity_hash(action: str, timestamp_ms: int) -> str:
    # Detection aid for later tamper checks; not a signature.
    return hashlib.sha256(f"{action}{timestamp_ms}".encode("utf-8")).hexdigest()


def verify_entry(entry: dict[str, Any]) -> bool:
    # Recompute the token from the stored fields and compare.
    try:
        expected = integrity_hash(str(entry["action"]), int(entry["timestamp"]))
    except (KeyError, TypeError, ValueError):
        return False
    return entry.get("hash") == expected


def _now_ms(now: datetime | None) -> int:
    return int((now or datetime.now(timezone.utc)).timestamp() * 1000)


async def record_system_action(
    store: KeyedStore,
    *,
    action: str,
    actor_id: str,
    metadata: dict[str, Any] | None = None,
    now: datetime | None = None,
    best_effort: bool = False,
) -> str | None:
    """Append one immutable entry to the system audit trail and return its id.

    Storage failures propagate unless ``best_effort`` is set, in which case they
    are logged and ``None`` is returned; callers documenting an effect that has
    already happened pass ``best_effort=True``.
    """
    timestamp = _now_ms(now)
    entry = {
        "action": action,
        "actor": actor_id,
        "timestamp": timestamp,
        "metadata": sanitize_metadata(metadata or {}),
        "hash": integrity_hash(action, timestamp),
    }
    try:
        log_id = await store.push(paths.audit_log(), entry)
    except StoreError as exc:
        if not best_effort:
            raise
        logger.warning("audit_write_failed action=%s actor=%s", action, actor_id, exc_info=exc)
        return None
    logger.info("audit_recorded action=%s actor=%s log_id=%s", action, actor_id, log_id)
    return log_id


async def list_audit_entries(
    store: KeyedStore,
    *,
    limit: int = 100,
    action: str | None = None,
) -> list[dict[str, Any]]:
    # Newest first; filtering by action happens after ordering by timestamp.
    rows = await store.query(paths.audit_log(), order_by_child="timestamp")
    entries: list[dict[str, Any]] = []
    for log_id, entry in reversed(rows):
        if not isinstance(entry, dict):
            continue
        if action is not None and entry.get("action") != action:
            continue
        entries.append({"id": log_id, **entry, "verified": verify_entry(entry)})
        if len(entries) >= limit:
            break
    return entries
