"""
Trust Score Cache: TTL-based caching for trust score reads.

Uses StorageBackend (Redis or InMemory) so the cache can be shared between
processes. Every state-changing trust operation invalidates the entity's
entry explicitly; the TTL only bounds how long an entry may outlive a write
made outside the engine.
"""

from __future__ import annotations

from trustalloc.core.clock import Clock, utcnow
from trustalloc.core.logging import get_logger
from trustalloc.storage.base import StorageBackend
from trustalloc.trust.types import TrustScore

logger = get_logger("trust.cache")

DEFAULT_TTL = 300  # 5 minutes

COLLECTION = "trust_cache"


class TrustScoreCache:
    """
    TTL-based cache backed by StorageBackend.

    Key pattern: trust_score:{entity_id}
    """

    def __init__(
        self,
        storage: StorageBackend,
        ttl: int = DEFAULT_TTL,
        clock: Clock = utcnow,
    ) -> None:
        self._storage = storage
        self._ttl = ttl
        self._clock = clock

    @staticmethod
    def _key(entity_id: str) -> str:
        return f"trust_score:{entity_id}"

    def _now(self) -> float:
        return self._clock().timestamp()

    async def get(self, entity_id: str) -> TrustScore | None:
        """
        Get cached score if not expired.

        Returns None on miss or expiry.
        """
        key = self._key(entity_id)
        entry = await self._storage.get(COLLECTION, key)

        if entry is None:
            return None

        if self._now() > entry.get("_expires_at", 0):
            # Expired: drop it and report a miss
            await self._storage.delete(COLLECTION, key)
            return None

        return TrustScore.from_dict(entry["data"])

    async def set(self, score: TrustScore, ttl: int | None = None) -> None:
        await self._storage.save(
            COLLECTION,
            self._key(score.entity_id),
            {
                "data": score.to_dict(),
                "_expires_at": self._now() + (self._ttl if ttl is None else ttl),
            },
        )

    async def invalidate(self, entity_id: str) -> bool:
        """Drop the cached entry for an entity. Returns True if one existed."""
        removed = await self._storage.delete(COLLECTION, self._key(entity_id))
        if removed:
            logger.debug(f"Invalidated cached trust score for {entity_id}")
        return removed


__all__ = ["TrustScoreCache"]
