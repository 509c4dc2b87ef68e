"""
In-Memory Storage Backend.

Default storage backend that keeps all data in memory.
Suitable for development, tests and single-process hosts.
"""

from __future__ import annotations

import time
import uuid
from copy import deepcopy
from decimal import Decimal, InvalidOperation
from typing import Any

from trustalloc.storage.base import StorageBackend, matches, register_storage_backend


class InMemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    Stores all data in Python dicts. Data is lost when process ends.
    No method awaits between its read and its write, so each call is
    atomic within one event loop.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {}
        self._counters: dict[str, dict[str, Decimal]] = {}
        self._locks: dict[str, tuple[str, float]] = {}

    def _ensure_collection(self, collection: str) -> dict[str, dict[str, Any]]:
        """Ensure collection exists and return it."""
        return self._data.setdefault(collection, {})

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        coll = self._ensure_collection(collection)
        coll[key] = deepcopy(data)

    async def save_many(
        self,
        collection: str,
        records: dict[str, dict[str, Any]],
    ) -> None:
        coll = self._ensure_collection(collection)
        coll.update({key: deepcopy(data) for key, data in records.items()})

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        coll = self._ensure_collection(collection)
        data = coll.get(key)
        return deepcopy(data) if data is not None else None

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        coll = self._ensure_collection(collection)
        return coll.pop(key, None) is not None

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        coll = self._ensure_collection(collection)

        results = []
        for key, data in coll.items():
            if not matches(data, filters):
                continue
            result = deepcopy(data)
            result["_key"] = key
            results.append(result)

        results = results[offset:]
        if limit is not None:
            results = results[:limit]

        return results

    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        coll = self._ensure_collection(collection)
        if key not in coll:
            return False

        coll[key].update(deepcopy(data))
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        coll = self._ensure_collection(collection)
        if filters:
            return sum(1 for data in coll.values() if matches(data, filters))
        return len(coll)

    async def clear(self, collection: str) -> int:
        coll = self._ensure_collection(collection)
        count = len(coll)
        coll.clear()
        return count

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        counters = self._counters.setdefault(collection, {})
        try:
            delta = Decimal(amount)
        except InvalidOperation as e:
            raise ValueError(f"atomic_add amount must be numeric, got {amount!r}") from e
        counters[key] = counters.get(key, Decimal("0")) + delta
        return str(counters[key])

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        now = time.monotonic()
        held = self._locks.get(key)
        if held is not None and now < held[1]:
            return None

        token = str(uuid.uuid4())
        self._locks[key] = (token, now + ttl)
        return token

    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        held = self._locks.get(key)
        if held is None or held[0] != token:
            return False
        del self._locks[key]
        return True

    async def health_check(self) -> bool:
        """Always healthy for in-memory."""
        return True


# Register as default backend
register_storage_backend("memory", InMemoryStorage)
