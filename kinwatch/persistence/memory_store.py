from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Mapping

from kinwatch.persistence.store import (
    apply_query,
    generate_push_key,
    is_empty,
    join_relative,
    prune_value,
    split_path,
    validate_update_paths,
)


class MemoryStore:
    """In-process keyed store backed by nested dicts.

    All mutations run under one asyncio lock, which gives the same per-call
    atomicity the hosted store provides. Values are deep-copied on the way in
    and out so callers never share mutable state with the tree.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._root: dict[str, Any] = copy.deepcopy(dict(initial or {}))
        self._lock = asyncio.Lock()

    async def get(self, path: str) -> Any:
        async with self._lock:
            return copy.deepcopy(self._read(split_path(path)))

    async def exists(self, path: str) -> bool:
        async with self._lock:
            return self._read(split_path(path)) is not None

    async def set(self, path: str, value: Any) -> None:
        async with self._lock:
            self._write(split_path(path), copy.deepcopy(value))

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        # Validate every target and every nested key first so a bad path aborts before any write lands.
        targets = {join_relative(path, key): prune_value(copy.deepcopy(value)) for key, value in values.items()}
        validate_update_paths(targets.keys())
        async with self._lock:
            for target, value in targets.items():
                self._write(split_path(target), value)

    async def push(self, path: str, value: Any) -> str:
        key = generate_push_key()
        async with self._lock:
            self._write(split_path(path) + [key], copy.deepcopy(value))
        return key

    async def remove(self, path: str) -> None:
        async with self._lock:
            self._write(split_path(path), None)

    async def transaction(self, path: str, fn: Callable[[Any], Any]) -> Any:
        segments = split_path(path)
        async with self._lock:
            current = copy.deepcopy(self._read(segments))
            updated = fn(current)
            self._write(segments, copy.deepcopy(updated))
            return copy.deepcopy(updated)

    async def query(
        self,
        path: str,
        *,
        order_by_child: str,
        start_at: Any = None,
        end_at: Any = None,
        equal_to: Any = None,
        limit: int | None = None,
    ) -> list[tuple[str, Any]]:
        async with self._lock:
            children = self._read(split_path(path))
            return apply_query(
                children,
                order_by_child=order_by_child,
                start_at=start_at,
                end_at=end_at,
                equal_to=equal_to,
                limit=limit,
            )

    async def child_keys(self, path: str) -> list[str]:
        async with self._lock:
            node = self._read(split_path(path))
            return sorted(node.keys()) if isinstance(node, dict) else []

    def snapshot(self) -> dict[str, Any]:
        # Expose a copy of the whole tree for test assertions.
        return copy.deepcopy(self._root)

    def _read(self, segments: list[str]) -> Any:
        node: Any = self._root
        for segment in segments:
            if not isinstance(node, dict):
                return None
            node = node.get(segment)
            if node is None:
                return None
        return node

    def _write(self, segments: list[str], value: Any) -> None:
        value = prune_value(value)
        if not segments:
            self._root = value if isinstance(value, dict) and not is_empty(value) else {}
            return
        if is_empty(value):
            self._delete(segments)
            return
        node = self._root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                # Writing below a leaf replaces the leaf with a branch.
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = value

    def _delete(self, segments: list[str]) -> None:
        # Remove the node and prune parents that become empty.
        trail: list[tuple[dict[str, Any], str]] = []
        node: Any = self._root
        for segment in segments[:-1]:
            if not isinstance(node, dict) or not isinstance(node.get(segment), dict):
                return
            trail.append((node, segment))
            node = node[segment]
        if not isinstance(node, dict):
            return
        node.pop(segments[-1], None)
        while trail and not node:
            parent, key = trail.pop()
            parent.pop(key, None)
            node = parent
