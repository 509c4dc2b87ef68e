"""
Metrics provider backed by the pluggable StorageBackend.

Used in development and tests, and by hosts that push their metrics into
the shared (Redis) store instead of serving them over HTTP.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from trustalloc.metrics.types import (
    BehaviorMetrics,
    KycRecord,
    ReadinessMetrics,
    parse_timestamp,
)

if TYPE_CHECKING:
    from trustalloc.storage.base import StorageBackend


class StoredMetricsProvider:
    """
    Implements every collaborator interface over StorageBackend collections.

    The set_* methods are the write side used by the host (or by tests).
    """

    PROFILES = "entity_profiles"
    KYC = "kyc_records"
    BEHAVIOR = "behavior_metrics"
    READINESS = "readiness_metrics"
    GUARANTOR_SCORES = "guarantor_scores"
    ACTIVITY = "entity_activity"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    # ─── Identity ────────────────────────────────────────────────────

    async def get_kyc_status(self, entity_id: str) -> KycRecord | None:
        data = await self._storage.get(self.KYC, entity_id)
        return KycRecord.from_dict(data) if data else None

    async def is_verified(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "is_verified")

    async def is_active(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "is_active")

    async def is_admin(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "is_admin")

    async def _profile_flag(self, entity_id: str, flag: str) -> bool:
        profile = await self._storage.get(self.PROFILES, entity_id)
        return bool(profile and profile.get(flag))

    async def set_profile(
        self,
        entity_id: str,
        is_verified: bool = False,
        is_active: bool = True,
        is_admin: bool = False,
    ) -> None:
        await self._storage.save(
            self.PROFILES,
            entity_id,
            {"is_verified": is_verified, "is_active": is_active, "is_admin": is_admin},
        )

    async def set_kyc(self, entity_id: str, record: KycRecord) -> None:
        await self._storage.save(self.KYC, entity_id, record.to_dict())

    # ─── Behavior / readiness ────────────────────────────────────────

    async def get_behavior_metrics(self, entity_id: str) -> BehaviorMetrics | None:
        data = await self._storage.get(self.BEHAVIOR, entity_id)
        return BehaviorMetrics.from_dict(data) if data else None

    async def set_behavior_metrics(self, entity_id: str, metrics: BehaviorMetrics) -> None:
        await self._storage.save(self.BEHAVIOR, entity_id, metrics.to_dict())

    async def get_readiness_metrics(self, entity_id: str) -> ReadinessMetrics | None:
        data = await self._storage.get(self.READINESS, entity_id)
        return ReadinessMetrics.from_dict(data) if data else None

    async def set_readiness_metrics(self, entity_id: str, metrics: ReadinessMetrics) -> None:
        await self._storage.save(self.READINESS, entity_id, metrics.to_dict())

    # ─── Guarantors ──────────────────────────────────────────────────

    async def get_guarantee_trust_score(self, entity_id: str) -> float | None:
        data = await self._storage.get(self.GUARANTOR_SCORES, entity_id)
        if not data or data.get("guarantee_trust_score") is None:
            return None
        return float(data["guarantee_trust_score"])

    async def set_guarantee_trust_score(self, entity_id: str, score: float) -> None:
        await self._storage.save(
            self.GUARANTOR_SCORES, entity_id, {"guarantee_trust_score": score}
        )

    # ─── Activity clock ──────────────────────────────────────────────

    async def get_last_activity_at(self, entity_id: str) -> datetime | None:
        data = await self._storage.get(self.ACTIVITY, entity_id)
        if not data or not data.get("last_activity_at"):
            return None
        return parse_timestamp(data["last_activity_at"])

    async def set_last_activity_at(self, entity_id: str, at: datetime) -> None:
        await self._storage.save(self.ACTIVITY, entity_id, {"last_activity_at": at.isoformat()})
