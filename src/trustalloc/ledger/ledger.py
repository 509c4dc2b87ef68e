"""
Trust event ledger.

Append-only audit trail of every state-changing trust operation. Events are
immutable once recorded: the ledger offers no update or delete.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from trustalloc.storage.base import StorageBackend


class TrustEventType(str, Enum):
    """Types of trust events."""

    UPDATED = "UPDATED"
    DECAY_APPLIED = "DECAY_APPLIED"
    RECOVERY_EVENT = "RECOVERY_EVENT"
    MANUAL_ADJUSTMENT = "MANUAL_ADJUSTMENT"
    THRESHOLD_BREACHED = "THRESHOLD_BREACHED"


class TriggerType(str, Enum):
    """What caused a trust change."""

    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    TRANSACTION = "TRANSACTION"
    LEARNING = "LEARNING"
    BEHAVIOR = "BEHAVIOR"
    PAYMENT = "PAYMENT"
    INVESTMENT = "INVESTMENT"
    AUCTION = "AUCTION"
    GUARANTEE = "GUARANTEE"


DECAY_RECOVERY_EVENTS = frozenset({TrustEventType.DECAY_APPLIED, TrustEventType.RECOVERY_EVENT})


@dataclass
class CalculationSnapshot:
    """
    Inputs behind a trust change.

    Each consumer fills only the fields it has: recalculation records the
    dimensions, decay records the inactivity, recovery the activity.
    """

    dimensions: dict[str, float] | None = None
    behavior_score: float | None = None
    days_inactive: int | None = None
    decay_rate: float | None = None
    activity_type: str | None = None
    activity_value: float | None = None
    threshold: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CalculationSnapshot:
        data = data or {}
        return cls(
            dimensions=data.get("dimensions"),
            behavior_score=data.get("behavior_score"),
            days_inactive=data.get("days_inactive"),
            decay_rate=data.get("decay_rate"),
            activity_type=data.get("activity_type"),
            activity_value=data.get("activity_value"),
            threshold=data.get("threshold"),
        )


@dataclass(frozen=True)
class TrustEvent:
    """
    A single audit record of a trust change.

    Attributes:
        entity_id: Entity whose score changed
        event_type: Kind of change
        previous_score: Aggregate before the change
        new_score: Aggregate after the change
        change_amount: new_score - previous_score (or the requested delta
            for manual adjustments)
        trigger_type: What caused it
        trigger_entity_id: Related entity (e.g. the adjusting admin)
        reason: Human-readable reason
        snapshot: Calculation inputs
    """

    entity_id: str
    event_type: TrustEventType
    previous_score: float
    new_score: float
    change_amount: float
    trigger_type: TriggerType
    reason: str
    created_at: datetime
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    sequence: int = 0
    trigger_entity_id: str | None = None
    trigger_entity_type: str | None = None
    snapshot: CalculationSnapshot = field(default_factory=CalculationSnapshot)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "event_type": self.event_type.value,
            "previous_score": self.previous_score,
            "new_score": self.new_score,
            "change_amount": self.change_amount,
            "trigger_type": self.trigger_type.value,
            "trigger_entity_id": self.trigger_entity_id,
            "trigger_entity_type": self.trigger_entity_type,
            "reason": self.reason,
            "snapshot": self.snapshot.to_dict(),
            "created_at": self.created_at.isoformat(),
            "sequence": self.sequence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrustEvent:
        return cls(
            id=data["id"],
            entity_id=data["entity_id"],
            event_type=TrustEventType(data["event_type"]),
            previous_score=float(data["previous_score"]),
            new_score=float(data["new_score"]),
            change_amount=float(data["change_amount"]),
            trigger_type=TriggerType(data.get("trigger_type", TriggerType.AUTOMATIC.value)),
            trigger_entity_id=data.get("trigger_entity_id"),
            trigger_entity_type=data.get("trigger_entity_type"),
            reason=data.get("reason", ""),
            snapshot=CalculationSnapshot.from_dict(data.get("snapshot")),
            created_at=datetime.fromisoformat(data["created_at"]),
            sequence=int(data.get("sequence", 0)),
        )


class TrustEventLedger:
    """
    Trust event ledger using StorageBackend.

    Only appends and reads; recorded events are never rewritten.
    """

    COLLECTION = "trust_events"
    SEQUENCE_COLLECTION = "trust_event_sequences"

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    async def record(
        self,
        entity_id: str,
        event_type: TrustEventType,
        previous_score: float,
        new_score: float,
        trigger_type: TriggerType,
        reason: str,
        created_at: datetime,
        change_amount: float | None = None,
        trigger_entity_id: str | None = None,
        trigger_entity_type: str | None = None,
        snapshot: CalculationSnapshot | None = None,
    ) -> TrustEvent:
        """
        Append an event.

        Returns:
            The recorded event
        """
        raw_sequence = await self._storage.atomic_add(self.SEQUENCE_COLLECTION, entity_id, "1")
        event = TrustEvent(
            entity_id=entity_id,
            event_type=event_type,
            previous_score=previous_score,
            new_score=new_score,
            change_amount=(
                change_amount if change_amount is not None else new_score - previous_score
            ),
            trigger_type=trigger_type,
            trigger_entity_id=trigger_entity_id,
            trigger_entity_type=trigger_entity_type,
            reason=reason,
            snapshot=snapshot or CalculationSnapshot(),
            created_at=created_at,
            sequence=int(Decimal(raw_sequence)),
        )
        await self._storage.save(self.COLLECTION, event.id, event.to_dict())
        return event

    async def get(self, event_id: str) -> TrustEvent | None:
        data = await self._storage.get(self.COLLECTION, event_id)
        if not data:
            return None
        return TrustEvent.from_dict(data)

    async def history(
        self,
        entity_id: str,
        event_types: set[TrustEventType] | frozenset[TrustEventType] | None = None,
        from_date: datetime | None = None,
        limit: int = 50,
    ) -> list[TrustEvent]:
        """
        Events for an entity, newest first.

        Args:
            entity_id: Entity to read
            event_types: Only these kinds of events
            from_date: Only events at or after this time
            limit: Maximum events to return
        """
        filters: dict[str, Any] = {"entity_id": entity_id}
        if event_types:
            filters["event_type"] = {t.value for t in event_types}

        raw_results = await self._storage.query(self.COLLECTION, filters=filters)
        events = [TrustEvent.from_dict(d) for d in raw_results]

        if from_date:
            events = [e for e in events if e.created_at >= from_date]

        events.sort(key=lambda e: (e.created_at, e.sequence), reverse=True)
        return events[:limit]

    async def count(self, entity_id: str, event_type: TrustEventType | None = None) -> int:
        filters: dict[str, Any] = {"entity_id": entity_id}
        if event_type:
            filters["event_type"] = event_type.value
        return await self._storage.count(self.COLLECTION, filters)
