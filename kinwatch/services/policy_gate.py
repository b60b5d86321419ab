from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.audit import ACTION_COMMAND_BLOCKED, record_system_action
from kinwatch.services.quota import MediaType, QuotaCheck, QuotaService, get_quota_service


logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    FROZEN = "FROZEN"
    LIMIT_REACHED = "LIMIT_REACHED"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: DenyReason | None = None
    quota: QuotaCheck | None = None


async def is_frozen(store: KeyedStore, uid: str) -> bool:
    return (await store.get(paths.frozen_flag(uid))) is True


class PolicyGate:
    """Freeze and quota precondition run before any gated write.

    The gate must finish, including any lazy quota rollover, before the caller
    performs the write it protects. Every denial is written to the audit trail;
    that audit entry is the only effect of a denied request.
    """

    def __init__(self, quota: QuotaService | None = None) -> None:
        self._quota = quota or get_quota_service()

    @property
    def quota(self) -> QuotaService:
        return self._quota

    async def check_allowed(
        self,
        store: KeyedStore,
        uid: str,
        media_type: MediaType | None,
        *,
        actor_id: str,
        audit_action: str = ACTION_COMMAND_BLOCKED,
        audit_metadata: dict[str, Any] | None = None,
    ) -> GateDecision:
        metadata = {"targetUid": uid, **(audit_metadata or {})}

        if await is_frozen(store, uid):
            await record_system_action(
                store,
                action=audit_action,
                actor_id=actor_id,
                metadata={**metadata, "reason": DenyReason.FROZEN.value},
            )
            logger.info("policy_gate_denied uid=%s reason=FROZEN action=%s", uid, audit_action)
            return GateDecision(allowed=False, reason=DenyReason.FROZEN)

        # Categories without a media correlate have no quota to consult.
        if media_type is None:
            return GateDecision(allowed=True)

        check = await self._quota.check_and_reset(store, uid, media_type)
        if not check.can_proceed:
            await record_system_action(
                store,
                action=audit_action,
                actor_id=actor_id,
                metadata={**metadata, "reason": DenyReason.LIMIT_REACHED.value, "type": media_type.value},
            )
            logger.info(
                "policy_gate_denied uid=%s reason=LIMIT_REACHED media_type=%s count=%s max=%s",
                uid,
                media_type.value,
                check.state.count,
                check.state.max,
            )
            return GateDecision(allowed=False, reason=DenyReason.LIMIT_REACHED, quota=check)
        return GateDecision(allowed=True, quota=check)
