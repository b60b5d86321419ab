from __future__ import annotations

import copy
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterator, Mapping, Sequence

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kinwatch.core.errors import StoreError, StoreUnavailableError
from kinwatch.domain.models import StoreNode
from kinwatch.persistence.db import get_sessionmaker
from kinwatch.persistence.store import (
    apply_query,
    generate_push_key,
    join_relative,
    normalize_path,
    prune_value,
    split_path,
    validate_update_paths,
)


logger = logging.getLogger(__name__)

# First writes to a brand-new counter cannot be row-locked; retry the CAS on PK conflicts.
_TRANSACTION_CONFLICT_RETRIES = 5


def _subtree_filter(path: str):
    # Match the node itself and every descendant leaf; autoescape keeps "_" in keys literal.
    if not path:
        return None
    return or_(StoreNode.path == path, StoreNode.path.startswith(path + "/", autoescape=True))


def _flatten(base: str, value: Any) -> Iterator[tuple[str, Any]]:
    if isinstance(value, Mapping):
        for key, child in value.items():
            yield from _flatten(f"{base}/{key}" if base else str(key), child)
        return
    yield base, value


def _assemble(base: str, rows: Sequence[tuple[str, Any]]) -> Any:
    # Rebuild the JSON tree below base from its flattened leaf rows.
    tree: dict[str, Any] = {}
    prefix_len = len(base) + 1 if base else 0
    for path, value in rows:
        if path == base:
            return copy.deepcopy(value)
        node = tree
        segments = path[prefix_len:].split("/")
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = copy.deepcopy(value)
    return tree or None


class SqlStore:
    """Keyed store persisted as flattened leaves in the store_nodes table."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._sessionmaker = sessionmaker or get_sessionmaker()

    @asynccontextmanager
    async def _session(self, *, write: bool, retry_conflicts: bool = False) -> AsyncIterator[AsyncSession]:
        # Translate driver failures into store errors so callers never see SQLAlchemy types.
        try:
            async with self._sessionmaker() as session:
                if write:
                    async with session.begin():
                        yield session
                else:
                    yield session
        except (OperationalError, OSError, TimeoutError) as exc:
            logger.warning("store_unavailable", exc_info=exc)
            raise StoreUnavailableError("keyed store unavailable") from exc
        except IntegrityError as exc:
            # Only transaction() retries key conflicts; everywhere else they are store failures.
            if retry_conflicts:
                raise
            logger.warning("store_write_conflict", exc_info=exc)
            raise StoreError("keyed store write conflicted") from exc
        except SQLAlchemyError as exc:
            logger.error("store_operation_failed", exc_info=exc)
            raise StoreError("keyed store operation failed") from exc

    async def _load(self, session: AsyncSession, path: str, *, lock: bool = False) -> list[tuple[str, Any]]:
        stmt = select(StoreNode.path, StoreNode.value)
        condition = _subtree_filter(path)
        if condition is not None:
            stmt = stmt.where(condition)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt.order_by(StoreNode.path))
        return [(row.path, row.value) for row in result]

    async def _write(self, session: AsyncSession, path: str, value: Any) -> None:
        # Replace the whole subtree at path, dropping any leaf that sat on an ancestor.
        condition = _subtree_filter(path)
        stmt = delete(StoreNode)
        if condition is not None:
            stmt = stmt.where(condition)
        await session.execute(stmt)
        segments = split_path(path)
        ancestors = ["/".join(segments[:index]) for index in range(1, len(segments))]
        if ancestors:
            await session.execute(delete(StoreNode).where(StoreNode.path.in_(ancestors)))
        pruned = prune_value(value)
        if pruned is None:
            return
        if not path and not isinstance(pruned, Mapping):
            return
        leaves = [{"path": leaf_path, "value": leaf} for leaf_path, leaf in _flatten(path, pruned)]
        if leaves:
            await session.execute(insert(StoreNode), leaves)

    async def get(self, path: str) -> Any:
        normalized = normalize_path(path)
        async with self._session(write=False) as session:
            rows = await self._load(session, normalized)
        return _assemble(normalized, rows)

    async def exists(self, path: str) -> bool:
        normalized = normalize_path(path)
        stmt = select(StoreNode.path).limit(1)
        condition = _subtree_filter(normalized)
        if condition is not None:
            stmt = stmt.where(condition)
        async with self._session(write=False) as session:
            return (await session.execute(stmt)).first() is not None

    async def set(self, path: str, value: Any) -> None:
        normalized = normalize_path(path)
        async with self._session(write=True) as session:
            await self._write(session, normalized, value)

    async def update(self, path: str, values: Mapping[str, Any]) -> None:
        targets = {join_relative(path, key): prune_value(value) for key, value in values.items()}
        ordered = validate_update_paths(targets.keys())
        async with self._session(write=True) as session:
            for target in ordered:
                await self._write(session, target, targets[target])

    async def push(self, path: str, value: Any) -> str:
        key = generate_push_key()
        await self.set(join_relative(path, key), value)
        return key

    async def remove(self, path: str) -> None:
        await self.set(path, None)

    async def transaction(self, path: str, fn: Callable[[Any], Any]) -> Any:
        normalized = normalize_path(path)
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._session(write=True, retry_conflicts=True) as session:
                    rows = await self._load(session, normalized, lock=True)
                    updated = fn(_assemble(normalized, rows))
                    await self._write(session, normalized, updated)
                return copy.deepcopy(updated)
            except IntegrityError as exc:
                if attempt >= _TRANSACTION_CONFLICT_RETRIES:
                    raise StoreError(f"transaction on {normalized!r} kept conflicting") from exc
                logger.info("store_transaction_conflict path=%s attempt=%s", normalized, attempt)

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
        # Range filtering happens in Python over the loaded subtree.
        children = await self.get(path)
        return apply_query(
            children if isinstance(children, dict) else None,
            order_by_child=order_by_child,
            start_at=start_at,
            end_at=end_at,
            equal_to=equal_to,
            limit=limit,
        )

    async def child_keys(self, path: str) -> list[str]:
        node = await self.get(path)
        return sorted(node.keys()) if isinstance(node, dict) else []
