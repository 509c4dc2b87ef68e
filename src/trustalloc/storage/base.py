"""
Abstract Storage Backend for trustalloc.

Provides the pluggable persistence layer for trust scores, auctions,
guarantees and the per-resource locks that make each state transition atomic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


def matches(data: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """
    Check a record against query filters.

    A filter value that is a list, tuple, set or frozenset matches any of
    its members; any other value must match exactly.
    """
    if not filters:
        return True
    for filter_key, filter_value in filters.items():
        value = data.get(filter_key)
        if isinstance(filter_value, (list, tuple, set, frozenset)):
            if value not in filter_value:
                return False
        elif value != filter_value:
            return False
    return True


class StorageBackend(ABC):
    """
    Abstract base class for storage backends.

    Provides simple CRUD operations for storing/retrieving data plus
    token-owned locks. Implementations can use any persistence layer
    (memory, Redis, ...).
    """

    @abstractmethod
    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        """
        Save data to storage.

        Args:
            collection: Collection/table name
            key: Unique key for the record
            data: Data to store (must be JSON-serializable)
        """
        ...

    @abstractmethod
    async def save_many(
        self,
        collection: str,
        records: dict[str, dict[str, Any]],
    ) -> None:
        """
        Save several records in one write.

        Args:
            collection: Collection/table name
            records: Mapping of key to data
        """
        ...

    @abstractmethod
    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        """
        Get data from storage.

        Returns:
            Data dict or None if not found
        """
        ...

    @abstractmethod
    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        """
        Delete data from storage.

        Returns:
            True if deleted, False if not found
        """
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """
        Query data with optional filters.

        Args:
            collection: Collection/table name
            filters: Key-value pairs to filter by (see `matches`)
            limit: Maximum records to return
            offset: Number of records to skip

        Returns:
            List of matching records, each with its key under "_key"
        """
        ...

    @abstractmethod
    async def update(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> bool:
        """
        Update existing data.

        Returns:
            True if updated, False if not found
        """
        ...

    @abstractmethod
    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        """Count records in collection."""
        ...

    @abstractmethod
    async def clear(self, collection: str) -> int:
        """
        Clear all records from a collection.

        Returns:
            Number of records deleted
        """
        ...

    @abstractmethod
    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        """
        Atomically add amount to a numeric value stored at key.

        Returns:
            New total value as string
        """
        ...

    @abstractmethod
    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        """
        Acquire a lock that expires after `ttl` seconds.

        Returns:
            Ownership token if acquired, None if already held
        """
        ...

    @abstractmethod
    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        """
        Release a lock, only if `token` still owns it.

        Returns:
            True if released
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if storage is healthy and connected.

        Returns:
            True if healthy
        """
        return True


# Storage backend registry for dependency injection
_STORAGE_BACKENDS: dict[str, type[StorageBackend]] = {}


def register_storage_backend(name: str, backend_class: type[StorageBackend]) -> None:
    """Register a storage backend by name."""
    _STORAGE_BACKENDS[name] = backend_class


def get_storage_backend(name: str) -> type[StorageBackend] | None:
    """Get a registered storage backend by name."""
    return _STORAGE_BACKENDS.get(name)


def list_storage_backends() -> list[str]:
    """List all registered storage backend names."""
    return list(_STORAGE_BACKENDS.keys())
