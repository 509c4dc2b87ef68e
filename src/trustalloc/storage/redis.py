"""
Redis Storage Backend.

Shared storage for hosts running several engine processes. Records are
JSON documents indexed per collection; locks use SET NX EX with a
token-checked release so one process never frees another's lock.
"""

from __future__ import annotations

import json
import os
import uuid
from typing import Any

import redis.asyncio as redis

from trustalloc.storage.base import StorageBackend, matches, register_storage_backend


class RedisStorage(StorageBackend):
    """
    Redis storage backend.

    Uses Redis for persistent storage. Suitable for production.
    """

    # Only delete the lock if the stored token is ours
    _RELEASE_LOCK_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "trustalloc",
    ) -> None:
        """
        Initialize Redis storage.

        Args:
            redis_url: Redis connection URL (or from TRUSTALLOC_REDIS_URL env)
            prefix: Key prefix for all storage keys
        """
        self._redis_url = redis_url or os.environ.get(
            "TRUSTALLOC_REDIS_URL",
            "redis://localhost:6379/0",
        )
        self._prefix = prefix
        self._client: redis.Redis | None = None

    def _get_client(self) -> redis.Redis:
        """Lazy-load Redis client."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    def _make_key(self, collection: str, key: str) -> str:
        return f"{self._prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:_index"

    async def save(
        self,
        collection: str,
        key: str,
        data: dict[str, Any],
    ) -> None:
        await self.save_many(collection, {key: data})

    async def save_many(
        self,
        collection: str,
        records: dict[str, dict[str, Any]],
    ) -> None:
        if not records:
            return
        client = self._get_client()
        async with client.pipeline(transaction=True) as pipe:
            for key, data in records.items():
                pipe.set(self._make_key(collection, key), json.dumps(data))
            pipe.sadd(self._index_key(collection), *records.keys())
            await pipe.execute()

    async def get(
        self,
        collection: str,
        key: str,
    ) -> dict[str, Any] | None:
        client = self._get_client()
        data = await client.get(self._make_key(collection, key))
        if data is None:
            return None
        return json.loads(data)

    async def delete(
        self,
        collection: str,
        key: str,
    ) -> bool:
        client = self._get_client()
        result = await client.delete(self._make_key(collection, key))
        await client.srem(self._index_key(collection), key)
        return result > 0

    async def query(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        client = self._get_client()
        keys = sorted(await client.smembers(self._index_key(collection)))

        results = []
        for key in keys:
            data = await self.get(collection, key)
            if data is None or not matches(data, filters):
                continue
            data["_key"] = key
            results.append(data)

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
        existing = await self.get(collection, key)
        if existing is None:
            return False

        existing.update(data)
        await self.save(collection, key, existing)
        return True

    async def count(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
    ) -> int:
        if filters:
            return len(await self.query(collection, filters))

        client = self._get_client()
        return await client.scard(self._index_key(collection))

    async def clear(self, collection: str) -> int:
        client = self._get_client()
        keys = await client.smembers(self._index_key(collection))
        for key in keys:
            await self.delete(collection, key)
        return len(keys)

    async def atomic_add(
        self,
        collection: str,
        key: str,
        amount: str,
    ) -> str:
        # Counters live outside the JSON document index
        client = self._get_client()
        counter_key = f"{self._prefix}:counters:{collection}:{key}"
        new_val = await client.incrbyfloat(counter_key, float(amount))
        return str(new_val)

    async def acquire_lock(
        self,
        key: str,
        ttl: int = 30,
    ) -> str | None:
        client = self._get_client()
        token = str(uuid.uuid4())
        result = await client.set(f"{self._prefix}:locks:{key}", token, nx=True, ex=ttl)
        return token if result else None

    async def release_lock(
        self,
        key: str,
        token: str,
    ) -> bool:
        client = self._get_client()
        result = await client.eval(
            self._RELEASE_LOCK_SCRIPT, 1, f"{self._prefix}:locks:{key}", token
        )
        return int(result) > 0

    async def health_check(self) -> bool:
        """Check Redis connection."""
        try:
            await self._get_client().ping()
            return True
        except redis.RedisError:
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None


register_storage_backend("redis", RedisStorage)
