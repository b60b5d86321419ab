from __future__ import annotations


# Top-level roots of the keyed store.
ACCOUNTS_ROOT = "account"
VAULT_ROOT = "Vault"
AUDIT_ROOT = "system_audit_logs"
REPLICA_ROOT = "AccountIndex"
ADMIN_ALERTS_ROOT = "AdminAlerts"
ADMINS_ROOT = "admins"
IDENTITIES_ROOT = "auth_users"
CHATS_ROOT = "chats"
DEAD_LETTER_ROOT = "DeadLetters"

# Account-level children that are not device keys.
PROFILE = "profile"
NOTIFICATIONS = "notifications"
SAVED_PASSWORDS = "Saved_Social_Passwords"
RESERVED_ACCOUNT_CHILDREN = frozenset({PROFILE, NOTIFICATIONS, SAVED_PASSWORDS, "device_status"})

# Per-device children.
COMMAND_HISTORY = "CommandHistory"
LEGACY_COMMANDS = "commands"
DEVICE_STATUS = "device_status"
SYSTEM_LOGS = "system_logs"


def join(*segments: str) -> str:
    return "/".join(segment.strip("/") for segment in segments if segment)


def account(uid: str) -> str:
    return join(ACCOUNTS_ROOT, uid)


def profile(uid: str) -> str:
    return join(ACCOUNTS_ROOT, uid, PROFILE)


def limits(uid: str, media_type: str | None = None) -> str:
    base = join(profile(uid), "limits")
    return join(base, media_type) if media_type else base


def frozen_flag(uid: str) -> str:
    return join(profile(uid), "security", "is_frozen")


def security(uid: str) -> str:
    return join(profile(uid), "security")


def deletion_warning(uid: str) -> str:
    return join(profile(uid), "deletion_warning_sent")


def account_type(uid: str) -> str:
    return join(profile(uid), "account_type")


def location_info(uid: str) -> str:
    return join(profile(uid), "location_info")


def login_history(uid: str) -> str:
    return join(profile(uid), "login_history")


def notifications(uid: str) -> str:
    return join(ACCOUNTS_ROOT, uid, NOTIFICATIONS)


def saved_passwords(uid: str, record_id: str | None = None) -> str:
    base = join(ACCOUNTS_ROOT, uid, SAVED_PASSWORDS)
    return join(base, record_id) if record_id else base


def device(uid: str, device_key: str) -> str:
    return join(ACCOUNTS_ROOT, uid, device_key)


def telemetry(uid: str, device_key: str, kind: str, record_id: str | None = None) -> str:
    base = join(device(uid, device_key), kind, "data")
    return join(base, record_id) if record_id else base


def command_history(uid: str, device_key: str) -> str:
    return join(device(uid, device_key), COMMAND_HISTORY)


def legacy_commands(uid: str, device_key: str) -> str:
    return join(device(uid, device_key), LEGACY_COMMANDS)


def device_status(uid: str, device_key: str) -> str:
    return join(device(uid, device_key), DEVICE_STATUS)


def last_battery_alert(uid: str, device_key: str) -> str:
    return join(device(uid, device_key), SYSTEM_LOGS, "last_battery_alert")


def vault(uid: str, bucket: str | None = None, entry_id: str | None = None) -> str:
    return join(VAULT_ROOT, uid, bucket or "", entry_id or "")


def audit_log(entry_id: str | None = None) -> str:
    return join(AUDIT_ROOT, entry_id or "")


def replica(uid: str | None = None) -> str:
    return join(REPLICA_ROOT, uid or "")


def admin_alerts() -> str:
    return ADMIN_ALERTS_ROOT


def admin_flag(uid: str) -> str:
    return join(ADMINS_ROOT, uid)


def identity(uid: str) -> str:
    return join(IDENTITIES_ROOT, uid)


def chat_messages(uid: str, device_key: str) -> str:
    return join(CHATS_ROOT, uid, device_key, "messages")


def dead_letter(uid: str, record_id: str | None = None) -> str:
    return join(DEAD_LETTER_ROOT, uid, record_id or "")
