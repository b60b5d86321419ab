from __future__ import annotations

import copy
import secrets
import threading
import time
from typing import Any, Callable, Iterable, Mapping, Protocol, runtime_checkable

from kinwatch.core.errors import InvalidPathError


_FORBIDDEN_KEY_CHARS = set(".#$[]")
# Push keys sort lexicographically in creation order, like the realtime stores devices write to.
_PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"

_push_lock = threading.Lock()
_last_push_ms = 0
_last_random: list[int] = [0] * 12


def normalize_path(path: str) -> str:
    # Reject empty segments and reserved characters so keys stay portable across backends.
    cleaned = (path or "").strip("/")
    if not cleaned:
        return ""
    segments = cleaned.split("/")
    for segment in segments:
        if not segment:
            raise InvalidPathError(f"empty segment in path {path!r}")
        if _FORBIDDEN_KEY_CHARS.intersection(segment):
            raise InvalidPathError(f"forbidden character in path segment {segment!r}")
    return cleaned


def split_path(path: str) -> list[str]:
    normalized = normalize_path(path)
    return normalized.split("/") if normalized else []


def is_ancestor(ancestor: str, path: str) -> bool:
    # Treat a path as its own ancestor so overlapping writes are caught both ways.
    if not ancestor:
        return True
    return path == ancestor or path.startswith(ancestor + "/")


def join_relative(base: str, relative: str) -> str:
    # Resolve a multi-path update key against the update's base path.
    base_norm = normalize_path(base)
    relative_norm = normalize_path(relative)
    if not base_norm:
        return relative_norm
    if not relative_norm:
        return base_norm
    return f"{base_norm}/{relative_norm}"


def is_empty(value: Any) -> bool:
    # Empty mappings are deletions, matching the store's "no empty nodes" rule.
    return value is None or (isinstance(value, Mapping) and not value)


def prune_value(value: Any) -> Any:
    # Drop null and empty children recursively; returns None when nothing is left.
    if isinstance(value, Mapping):
        pruned: dict[str, Any] = {}
        for key, child in value.items():
            normalize_path(str(key))
            cleaned = prune_value(child)
            if cleaned is not None:
                pruned[str(key)] = cleaned
        return pruned or None
    return value


def generate_push_key(now_ms: int | None = None) -> str:
    # Emit 8 timestamp chars plus 12 random chars; same-millisecond keys increment the random tail.
    global _last_push_ms
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    with _push_lock:
        if ts == _last_push_ms:
            for index in range(11, -1, -1):
                if _last_random[index] != 63:
                    _last_random[index] += 1
                    break
                _last_random[index] = 0
        else:
            _last_push_ms = ts
            for index in range(12):
                _last_random[index] = secrets.randbelow(64)
        tail = "".join(_PUSH_CHARS[value] for value in _last_random)
    head_chars: list[str] = []
    for _ in range(8):
        head_chars.append(_PUSH_CHARS[ts % 64])
        ts //= 64
    return "".join(reversed(head_chars)) + tail


def child_value(value: Any, child_path: str) -> Any:
    # Resolve a nested child ("profile/created_at") inside an already-loaded node.
    current = value
    for segment in split_path(child_path):
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
    return current


def _sort_key(value: Any) -> tuple[int, Any]:
    # Order like the realtime store: null < false < true < numbers < strings < objects.
    if value is None:
        return (0, 0)
    if value is False:
        return (1, 0)
    if value is True:
        return (2, 0)
    if isinstance(value, (int, float)):
        return (3, value)
    if isinstance(value, str):
        return (4, value)
    return (5, 0)


def apply_query(
    children: Mapping[str, Any] | None,
    *,
    order_by_child: str,
    start_at: Any = None,
    end_at: Any = None,
    equal_to: Any = None,
    limit: int | None = None,
) -> list[tuple[str, Any]]:
    # Filter and order children by a nested child value; shared by every backend.
    if not isinstance(children, Mapping):
        return []
    rows: list[tuple[tuple[int, Any], str, Any]] = []
    for key, node in children.items():
        ordered = child_value(node, order_by_child)
        sort_key = _sort_key(ordered)
        if equal_to is not None and sort_key != _sort_key(equal_to):
            continue
        if start_at is not None and sort_key < _sort_key(start_at):
            continue
        if end_at is not None and sort_key > _sort_key(end_at):
            continue
        rows.append((sort_key, key, node))
    rows.sort(key=lambda row: (row[0], row[1]))
    if limit is not None:
        rows = rows[: max(limit, 0)]
    return [(key, copy.deepcopy(node)) for _sort, key, node in rows]


def validate_update_paths(paths: Iterable[str]) -> list[str]:
    # Multi-path updates must not contain ancestor/descendant pairs.
    normalized = sorted(normalize_path(path) for path in paths)
    for index in range(1, len(normalized)):
        if is_ancestor(normalized[index - 1], normalized[index]):
            raise InvalidPathError(
                f"overlapping update paths {normalized[index - 1]!r} and {normalized[index]!r}"
            )
    return normalized


@runtime_checkable
class KeyedStore(Protocol):
    # Hierarchical JSON store; every method is independently atomic.

    async def get(self, path: str) -> Any: ...

    async def exists(self, path: str) -> bool: ...

    async def set(self, path: str, value: Any) -> None: ...

    async def update(self, path: str, values: Mapping[str, Any]) -> None: ...

    async def push(self, path: str, value: Any) -> str: ...

    async def remove(self, path: str) -> None: ...

    async def transaction(self, path: str, fn: Callable[[Any], Any]) -> Any: ...

    async def query(
        self,
        path: str,
        *,
        order_by_child: str,
        start_at: Any = None,
        end_at: Any = None,
        equal_to: Any = None,
        limit: int | None = None,
    ) -> list[tuple[str, Any]]: ...

    async def child_keys(self, path: str) -> list[str]: ...
