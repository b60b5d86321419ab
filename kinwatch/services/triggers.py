"""Change-feed dispatch.

A ``ChangeEvent`` describes one write to the keyed store as a before/after pair
for a single path. ``dispatch_change`` matches the path against the registered
patterns and runs the handler for it; unmatched paths are ignored.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Awaitable, Callable

from kinwatch.persistence import paths
from kinwatch.persistence.store import KeyedStore
from kinwatch.services.ingestion import IngestionRouter, TelemetryEvent, get_ingestion_router
from kinwatch.services.replica import sync_read_replica


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    before: Any = None
    after: Any = None

    @property
    def created(self) -> bool:
        return self.before is None and self.after is not None

    @property
    def deleted(self) -> bool:
        return self.before is not None and self.after is None


Handler = Callable[[KeyedStore, ChangeEvent, dict[str, str], IngestionRouter], Awaitable[dict[str, Any]]]


async def _on_telemetry_created(
    store: KeyedStore, event: ChangeEvent, params: dict[str, str], router: IngestionRouter
) -> dict[str, Any]:
    # Only creations fire the router; edits and deletes of a record are not re-ingested.
    if not event.created:
        return {"handled": False}
    outcome = await router.handle_record_created(
        store,
        TelemetryEvent(
            uid=params["uid"],
            device_key=params["device_key"],
            kind=params["kind"],
            record_id=params["record_id"],
            record=event.after if isinstance(event.after, dict) else None,
        ),
    )
    return {
        "handled": True,
        "action": outcome.action,
        "category": outcome.category.value if outcome.category else None,
        "reason": outcome.reason,
    }


async def _on_device_status(
    store: KeyedStore, event: ChangeEvent, params: dict[str, str], router: IngestionRouter
) -> dict[str, Any]:
    if event.after is None:
        return {"handled": False}
    alerted = await router.handle_device_status(store, params["uid"], params["device_key"], event.after)
    return {"handled": True, "alerted": alerted}


async def _on_profile_written(
    store: KeyedStore, event: ChangeEvent, params: dict[str, str], router: IngestionRouter
) -> dict[str, Any]:
    synced = await sync_read_replica(store, params["uid"], event.after if isinstance(event.after, dict) else None)
    return {"handled": True, "synced": synced}


_ROUTES: list[tuple[re.Pattern[str], Handler]] = [
    # In-process profile writers sync the replica directly; this route serves
    # profile events arriving from an external change feed through the worker.
    (re.compile(r"^account/(?P<uid>[^/]+)/profile$"), _on_profile_written),
    (
        re.compile(r"^account/(?P<uid>[^/]+)/(?P<device_key>[^/]+)/device_status$"),
        _on_device_status,
    ),
    (
        re.compile(r"^account/(?P<uid>[^/]+)/(?P<device_key>[^/]+)/(?P<kind>[^/]+)/data/(?P<record_id>[^/]+)$"),
        _on_telemetry_created,
    ),
]


def match_route(path: str) -> tuple[Handler, dict[str, str]] | None:
    normalized = path.strip("/")
    for pattern, handler in _ROUTES:
        match = pattern.match(normalized)
        if match is None:
            continue
        params = match.groupdict()
        # Account-level children such as notifications are never device keys.
        if params.get("device_key") in paths.RESERVED_ACCOUNT_CHILDREN:
            continue
        return handler, params
    return None


async def dispatch_change(
    store: KeyedStore,
    event: ChangeEvent,
    *,
    router: IngestionRouter | None = None,
) -> dict[str, Any]:
    matched = match_route(event.path)
    if matched is None:
        logger.debug("change_ignored path=%s", event.path)
        return {"handled": False}
    handler, params = matched
    result = await handler(store, event, params, router or get_ingestion_router())
    logger.info("change_dispatched path=%s handler=%s result=%s", event.path, handler.__name__, result)
    return result
