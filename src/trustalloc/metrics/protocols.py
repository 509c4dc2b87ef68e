"""
Collaborator interfaces consumed by the engines.

The engines call these synchronously within an operation and hold no
state of their own about the host's users. Missing data is reported as
None (or False), never by raising.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from trustalloc.metrics.types import BehaviorMetrics, KycRecord, ReadinessMetrics


@runtime_checkable
class IdentityStore(Protocol):
    """Identity, KYC and role lookups."""

    async def get_kyc_status(self, entity_id: str) -> KycRecord | None: ...

    async def is_verified(self, entity_id: str) -> bool: ...

    async def is_active(self, entity_id: str) -> bool: ...

    async def is_admin(self, entity_id: str) -> bool: ...


@runtime_checkable
class BehaviorMetricsStore(Protocol):
    async def get_behavior_metrics(self, entity_id: str) -> BehaviorMetrics | None: ...


@runtime_checkable
class ReadinessStore(Protocol):
    async def get_readiness_metrics(self, entity_id: str) -> ReadinessMetrics | None: ...


@runtime_checkable
class ActivityClock(Protocol):
    """Last tracked activity per entity."""

    async def get_last_activity_at(self, entity_id: str) -> datetime | None: ...

    async def set_last_activity_at(self, entity_id: str, at: datetime) -> None: ...


@runtime_checkable
class GuarantorScoreStore(Protocol):
    """Guarantee-specific trust scores (0-100) of guarantors."""

    async def get_guarantee_trust_score(self, entity_id: str) -> float | None: ...


class MetricsProvider(
    IdentityStore,
    BehaviorMetricsStore,
    ReadinessStore,
    ActivityClock,
    GuarantorScoreStore,
    Protocol,
):
    """Everything the engines need from the host, in one object."""
