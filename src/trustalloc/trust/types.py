"""
Trust score types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

DIMENSIONS = ("identity", "transaction", "financial", "performance", "learning")


@dataclass
class DimensionScores:
    """The five trust dimensions, each 0-100."""

    identity: float = 0.0
    transaction: float = 0.0
    financial: float = 0.0
    performance: float = 0.0
    learning: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in DIMENSIONS}

    @classmethod
    def from_mapping(cls, values: dict[str, float]) -> DimensionScores:
        return cls(**{name: float(values.get(name, 0.0)) for name in DIMENSIONS})


@dataclass
class TrustScore:
    """
    Per-entity trust score.

    `trust_score` is always the weighted combination of the five dimensions.
    `adjustments` holds per-dimension offsets left by decay, recovery and
    manual adjustments; recalculation re-applies them on top of the
    metric-derived values.
    """

    entity_id: str
    identity_trust: float = 0.0
    transaction_trust: float = 0.0
    financial_trust: float = 0.0
    performance_trust: float = 0.0
    learning_trust: float = 0.0
    behavior_score: float = 0.0
    trust_score: float = 0.0
    adjustments: dict[str, float] = field(default_factory=dict)
    last_calculated_at: datetime | None = None
    last_decay_at: datetime | None = None
    calculation_version: str = "1.0"

    @property
    def dimensions(self) -> DimensionScores:
        return DimensionScores(
            identity=self.identity_trust,
            transaction=self.transaction_trust,
            financial=self.financial_trust,
            performance=self.performance_trust,
            learning=self.learning_trust,
        )

    def set_dimensions(self, dims: DimensionScores) -> None:
        self.identity_trust = dims.identity
        self.transaction_trust = dims.transaction
        self.financial_trust = dims.financial
        self.performance_trust = dims.performance
        self.learning_trust = dims.learning

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "identity_trust": self.identity_trust,
            "transaction_trust": self.transaction_trust,
            "financial_trust": self.financial_trust,
            "performance_trust": self.performance_trust,
            "learning_trust": self.learning_trust,
            "behavior_score": self.behavior_score,
            "trust_score": self.trust_score,
            "adjustments": self.adjustments,
            "last_calculated_at": (
                self.last_calculated_at.isoformat() if self.last_calculated_at else None
            ),
            "last_decay_at": self.last_decay_at.isoformat() if self.last_decay_at else None,
            "calculation_version": self.calculation_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrustScore:
        def ts(key: str) -> datetime | None:
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return cls(
            entity_id=data["entity_id"],
            identity_trust=float(data.get("identity_trust", 0.0)),
            transaction_trust=float(data.get("transaction_trust", 0.0)),
            financial_trust=float(data.get("financial_trust", 0.0)),
            performance_trust=float(data.get("performance_trust", 0.0)),
            learning_trust=float(data.get("learning_trust", 0.0)),
            behavior_score=float(data.get("behavior_score", 0.0)),
            trust_score=float(data.get("trust_score", 0.0)),
            adjustments={k: float(v) for k, v in data.get("adjustments", {}).items()},
            last_calculated_at=ts("last_calculated_at"),
            last_decay_at=ts("last_decay_at"),
            calculation_version=data.get("calculation_version", "1.0"),
        )


@dataclass
class DimensionExplanation:
    """Score of one dimension with the facts behind it."""

    score: float
    factors: list[str] = field(default_factory=list)


@dataclass
class TrustExplanation:
    """Human-readable breakdown of a trust score."""

    entity_id: str
    overall_score: float
    band: str
    band_description: str
    breakdown: dict[str, DimensionExplanation]
    behavior_score: float
    last_updated: datetime | None


@dataclass
class DecayBatchResult:
    """Counters from one decay sweep."""

    processed: int = 0
    decayed: int = 0
    errors: int = 0
    next_cursor: str | None = None
