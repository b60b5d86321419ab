from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Callable

from kinwatch.core.errors import (
    InvalidArgumentError,
    PermissionDeniedError,
    ResourceExhaustedError,
)
from kinwatch.persistence import paths
from kinwatch.persistence.repos.commands import append_command
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.audit import ACTION_COMMAND_SENT, record_system_action
from kinwatch.services.auth.principals import CallerContext, verify_admin
from kinwatch.services.policy_gate import DenyReason, PolicyGate
from kinwatch.services.quota import MediaType


logger = logging.getLogger(__name__)


class CommandType(str, Enum):
    CAPTURE_PHOTO = "capturePhoto"
    RECORD_VIDEO = "recordVideo"
    RECORD_AUDIO = "recordAudio"
    TEST_COMMAND = "testCommand"


# Closed mapping from command to the quota it consumes; None means no media quota applies.
COMMAND_QUOTA: dict[CommandType, MediaType | None] = {
    CommandType.CAPTURE_PHOTO: MediaType.PHOTOS,
    CommandType.RECORD_VIDEO: MediaType.VIDEOS,
    CommandType.RECORD_AUDIO: MediaType.AUDIO,
    CommandType.TEST_COMMAND: None,
}


@dataclass(frozen=True)
class CommandResult:
    success: bool
    message: str
    command_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"success": self.success, "message": self.message, "command_id": self.command_id}


def resolve_command_type(command_type: str) -> CommandType:
    try:
        return CommandType(command_type)
    except ValueError as exc:
        raise InvalidArgumentError(
            f"Unknown command type {command_type!r}.",
            details={"allowed": [item.value for item in CommandType]},
        ) from exc


class CommandDispatcher:
    """Admin-to-device command entry point.

    Strict order: verify admin, policy gate (freeze then quota), append the
    pending command to CommandHistory, bump the quota, audit. Nothing is
    written before the gate passes apart from the gate's own denial audit.
    """

    def __init__(
        self,
        *,
        gate: PolicyGate | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._gate = gate or PolicyGate()
        self._time_provider = time_provider or (lambda: datetime.now(timezone.utc))

    async def send_command(
        self,
        store: KeyedStore,
        caller: CallerContext | None,
        *,
        target_uid: str,
        device_key: str,
        command_type: str,
        payload: dict[str, Any] | None = None,
    ) -> CommandResult:
        admin_uid = await verify_admin(store, caller)
        if not target_uid or not device_key:
            raise InvalidArgumentError("targetUid and deviceKey are required.")
        if device_key in paths.RESERVED_ACCOUNT_CHILDREN:
            raise InvalidArgumentError(f"{device_key} is not a device key.")
        resolved = resolve_command_type(command_type)
        media_type = COMMAND_QUOTA[resolved]

        decision = await self._gate.check_allowed(
            store,
            target_uid,
            media_type,
            actor_id=admin_uid,
            audit_metadata={"deviceKey": device_key, "commandType": resolved.value},
        )
        if not decision.allowed:
            if decision.reason is DenyReason.FROZEN:
                raise PermissionDeniedError(
                    "Account is currently frozen by Admin.",
                    details={"reason": DenyReason.FROZEN.value},
                )
            state = decision.quota.state if decision.quota else None
            raise ResourceExhaustedError(
                "Command Blocked: Target user has exceeded the daily media limit "
                f"({state.count if state else '?'}/{state.max if state else '?'}). "
                "Increase limit via Admin Controls.",
                details={"reason": DenyReason.LIMIT_REACHED.value, "type": media_type.value if media_type else None},
            )

        command_id = await append_command(
            store,
            target_uid,
            device_key,
            {
                "type": resolved.value,
                "commandType": resolved.value,
                "status": "pending",
                "timestamp": int(self._time_provider().timestamp() * 1000),
                "requested_by": admin_uid,
                "details": payload or {},
            },
        )
        if media_type is not None:
            await self._gate.quota.increment(store, target_uid, media_type)

        # The command already exists; a failed audit write must not fail the call.
        await record_system_action(
            store,
            action=ACTION_COMMAND_SENT,
            actor_id=admin_uid,
            metadata={"targetUid": target_uid, "deviceKey": device_key, "commandType": resolved.value, "commandId": command_id},
            now=self._time_provider(),
            best_effort=True,
        )
        logger.info(
            "command_sent admin=%s target=%s device=%s command_type=%s command_id=%s",
            admin_uid,
            target_uid,
            device_key,
            resolved.value,
            command_id,
        )
        return CommandResult(success=True, message="Command sent successfully.", command_id=command_id)


_dispatcher: CommandDispatcher | None = None


def get_command_dispatcher() -> CommandDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = CommandDispatcher()
    return _dispatcher


def reset_command_dispatcher() -> None:
    global _dispatcher
    _dispatcher = None
