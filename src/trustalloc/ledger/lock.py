"""
Resource Lock Service.

Serializes state transitions on one resource (an auction, a guarantee
request, an entity's trust score) so that two concurrent read-then-write
operations cannot both act on stale state.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from trustalloc.core.exceptions import ConcurrencyError

if TYPE_CHECKING:
    from trustalloc.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class LockService:
    """
    Service for managing per-resource locks (mutexes).

    Implements a distributed lock pattern using the storage backend.
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = 30,
        retry_count: int = 20,
        retry_delay: float = 0.05,
    ) -> None:
        """
        Initialize lock service.

        Args:
            storage: Storage backend (Redis/Memory)
            ttl: Lock time-to-live in seconds
            retry_count: Number of retries while the lock is held elsewhere
            retry_delay: Delay between retries in seconds
        """
        self._storage = storage
        self._ttl = ttl
        self._retry_count = retry_count
        self._retry_delay = retry_delay

    @staticmethod
    def _lock_key(scope: str, resource_id: str) -> str:
        return f"lock:{scope}:{resource_id}"

    async def acquire(
        self,
        scope: str,
        resource_id: str,
        retry_count: int | None = None,
        retry_delay: float | None = None,
    ) -> str | None:
        """
        Acquire the lock for a resource.

        Args:
            scope: Resource kind ("auction", "guarantee_request", "trust")
            resource_id: Resource ID to lock
            retry_count: Override the configured retry count
            retry_delay: Override the configured retry delay

        Returns:
            lock_token (str) if successful, None if failed
        """
        lock_key = self._lock_key(scope, resource_id)
        retries = self._retry_count if retry_count is None else retry_count
        delay = self._retry_delay if retry_delay is None else retry_delay

        for i in range(retries + 1):
            token = await self._storage.acquire_lock(lock_key, self._ttl)
            if token:
                logger.debug(f"Acquired {lock_key} (token: {token[:8]}...)")
                return token

            if i < retries:
                await asyncio.sleep(delay)

        logger.warning(f"Failed to acquire {lock_key} after {retries} retries")
        return None

    async def release(self, scope: str, resource_id: str, lock_token: str) -> bool:
        """
        Release a previously acquired lock.

        Returns:
            True if released, False if not found or token mismatch
        """
        lock_key = self._lock_key(scope, resource_id)
        result = await self._storage.release_lock(lock_key, lock_token)
        if result:
            logger.debug(f"Released {lock_key}")
        else:
            logger.warning(f"Lock {lock_key} was not held by token {lock_token[:8]}...")
        return result

    @asynccontextmanager
    async def hold(self, scope: str, resource_id: str) -> AsyncIterator[str]:
        """
        Hold a resource lock for the duration of the block.

        Raises:
            ConcurrencyError: If the lock stays busy past the retry budget
        """
        token = await self.acquire(scope, resource_id)
        if token is None:
            raise ConcurrencyError(
                f"{scope} {resource_id} is busy, try again",
                lock_key=self._lock_key(scope, resource_id),
            )
        try:
            yield token
        finally:
            await self.release(scope, resource_id, token)
