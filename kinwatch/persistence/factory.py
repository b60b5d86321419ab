from __future__ import annotations

from kinwatch.core.config import get_settings
from kinwatch.core.errors import StoreError
from kinwatch.persistence.memory_store import MemoryStore
from kinwatch.persistence.store import KeyedStore


_store: KeyedStore | None = None


def build_store(backend: str) -> KeyedStore:
    normalized = backend.strip().lower()
    if normalized == "memory":
        return MemoryStore()
    if normalized == "sql":
        # Import lazily so memory deployments never need a database driver.
        from kinwatch.persistence.sql_store import SqlStore

        return SqlStore()
    raise StoreError(f"unknown store backend {backend!r}")


def get_store() -> KeyedStore:
    # Cache one store per process; every handler receives it explicitly.
    global _store
    if _store is None:
        _store = build_store(get_settings().store_backend)
    return _store


def set_store(store: KeyedStore | None) -> None:
    # Swap the process store for tests and embedded runs.
    global _store
    _store = store
