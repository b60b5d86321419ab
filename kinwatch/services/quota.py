from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Callable
from zoneinfo import ZoneInfo

from kinwatch.core.config import Settings, get_settings
from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore


logger = logging.getLogger(__name__)


class MediaType(str, Enum):
    PHOTOS = "photos"
    VIDEOS = "videos"
    AUDIO = "audio"


@dataclass(frozen=True)
class QuotaState:
    # Daily counter for one account and media type; date is the local calendar day.
    count: int
    date: str | None
    max: int

    def as_dict(self) -> dict[str, Any]:
        return {"count": self.count, "date": self.date, "max": self.max}


@dataclass(frozen=True)
class QuotaCheck:
    can_proceed: bool
    state: QuotaState


class QuotaService:
    """Owns the per-account daily media counters.

    ``check_and_reset`` and ``increment`` are deliberately separate store
    operations: two concurrent callers can both pass the check before either
    increments, so the limit is a soft cap that can be overshot by the number
    of in-flight requests. The increment itself is a store transaction and
    never loses updates.
    """

    def __init__(
        self,
        *,
        time_provider: Callable[[], datetime] | None = None,
        settings: Settings | None = None,
    ) -> None:
        # Allow time injection for deterministic rollover tests.
        self._time_provider = time_provider or _utc_now
        self._settings = settings or get_settings()

    def today(self, now: datetime | None = None) -> str:
        # Quota days follow the configured local calendar, not a rolling 24h window.
        now = now or self._time_provider()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(ZoneInfo(self._settings.quota_timezone)).date().isoformat()

    def default_max(self, media_type: MediaType) -> int:
        defaults = {
            MediaType.PHOTOS: self._settings.quota_default_photos,
            MediaType.VIDEOS: self._settings.quota_default_videos,
            MediaType.AUDIO: self._settings.quota_default_audio,
        }
        return defaults[media_type]

    def default_limits(self) -> dict[str, dict[str, int]]:
        # Initial quota block written for new accounts.
        return {media.value: {"count": 0, "max": self.default_max(media)} for media in MediaType}

    async def read_state(self, store: KeyedStore, uid: str, media_type: MediaType) -> QuotaState:
        raw = await store.get(paths.limits(uid, media_type.value))
        return self._coerce(raw, media_type)

    async def check_and_reset(self, store: KeyedStore, uid: str, media_type: MediaType) -> QuotaCheck:
        today = self.today()
        state = await self.read_state(store, uid, media_type)
        if state.date != today:
            # Roll the counter over before evaluating; max is left untouched.
            await store.update(paths.limits(uid, media_type.value), {"count": 0, "date": today})
            logger.info("quota_rollover uid=%s media_type=%s previous_date=%s", uid, media_type.value, state.date)
            state = QuotaState(count=0, date=today, max=state.max)
        return QuotaCheck(can_proceed=state.count < state.max, state=state)

    async def increment(self, store: KeyedStore, uid: str, media_type: MediaType) -> int:
        # Atomic counter bump via the store's transaction primitive.
        updated = await store.transaction(
            paths.join(paths.limits(uid, media_type.value), "count"),
            lambda current: int(current or 0) + 1,
        )
        return int(updated)

    def _coerce(self, raw: Any, media_type: MediaType) -> QuotaState:
        default_max = self.default_max(media_type)
        if not isinstance(raw, dict):
            return QuotaState(count=0, date=None, max=default_max)
        raw_max = raw.get("max")
        return QuotaState(
            count=_as_int(raw.get("count"), 0),
            date=raw.get("date") if isinstance(raw.get("date"), str) else None,
            max=_as_int(raw_max, default_max) if raw_max is not None else default_max,
        )


_quota_service: QuotaService | None = None


def get_quota_service() -> QuotaService:
    # Cache the quota service for reuse across requests.
    global _quota_service
    if _quota_service is None:
        _quota_service = QuotaService()
    return _quota_service


def reset_quota_service() -> None:
    # Reset cached services for deterministic tests.
    global _quota_service
    _quota_service = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_int(value: Any, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback
