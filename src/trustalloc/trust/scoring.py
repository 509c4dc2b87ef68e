"""
Trust Score computation: dimension formulas, decay and recovery.

Pure functions over raw collaborator metrics. Nothing here touches storage,
so every rule can be tested in isolation.

Dimensions (each clamped to 0-100):
1. Identity:    KYC status (60/30/10/0) + verified 20 + active 10 + documents 10
2. Transaction: success*0.7 + punctuality*0.2 + delivery*0.1 (50 without history)
3. Financial:   punctuality*0.8 [+ escrow*0.2 if escrows exist] (50 without payments)
4. Performance: delivery*0.7 + success*0.2 + max(0, 10 - dispute*10) (50 without deliveries)
5. Learning:    courses, certifications, quiz and documentation (0 without metrics)

Aggregate = 0.30*identity + 0.20*(transaction + financial + performance) + 0.10*learning.
"""

from __future__ import annotations

from trustalloc.metrics.types import BehaviorMetrics, KycRecord, KycStatus, ReadinessMetrics
from trustalloc.trust.types import DIMENSIONS, DimensionScores

WEIGHTS: dict[str, float] = {
    "identity": 0.30,
    "transaction": 0.20,
    "financial": 0.20,
    "performance": 0.20,
    "learning": 0.10,
}

NEUTRAL_SCORE = 50.0

KYC_POINTS = {
    KycStatus.APPROVED: 60.0,
    KycStatus.IN_PROGRESS: 30.0,
    KycStatus.PENDING: 10.0,
}

INACTIVITY_THRESHOLD_DAYS = 30
MAX_RECOVERY_PER_EVENT = 5.0
MIN_DECAY_STEP = 0.1

# (days inactive lower bound, points lost per month), highest first
DECAY_BANDS = (
    (180, 3.0),
    (90, 2.0),
    (60, 1.0),
    (30, 0.5),
)


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return min(high, max(low, value))


# ─── Dimensions ──────────────────────────────────────────────────────


def identity_trust(kyc: KycRecord | None, is_verified: bool, is_active: bool) -> float:
    score = 0.0
    if kyc is not None:
        score += KYC_POINTS.get(kyc.status, 0.0)
    if is_verified:
        score += 20
    if is_active:
        score += 10
    if kyc is not None and kyc.documents_complete:
        score += 10
    return min(100.0, score)


def transaction_trust(metrics: BehaviorMetrics | None) -> float:
    if metrics is None or metrics.total_transactions == 0:
        return NEUTRAL_SCORE
    score = (
        metrics.success_rate * 0.7
        + metrics.payment_punctuality * 0.2
        + metrics.delivery_timeliness * 0.1
    )
    return clamp(score)


def financial_trust(metrics: BehaviorMetrics | None) -> float:
    if metrics is None or metrics.total_payments == 0:
        return NEUTRAL_SCORE
    score = metrics.payment_punctuality * 0.8
    if metrics.total_escrows > 0:
        score += metrics.escrow_success_rate * 0.2
    return clamp(score)


def performance_trust(metrics: BehaviorMetrics | None) -> float:
    if metrics is None or metrics.total_deliveries == 0:
        return NEUTRAL_SCORE
    score = metrics.delivery_timeliness * 0.7 + metrics.success_rate * 0.2
    score += max(0.0, 10 - metrics.dispute_rate * 10)
    return clamp(score)


def learning_trust(metrics: ReadinessMetrics | None) -> float:
    if metrics is None:
        return 0.0
    score = 0.0
    if metrics.courses_completed > 0:
        score += min(40.0, metrics.courses_completed * 5)
    if metrics.certifications_earned > 0:
        score += min(30.0, metrics.certifications_earned * 10)
    if metrics.quiz_average_score:
        score += metrics.quiz_average_score * 0.2
    score += metrics.documentation_readiness * 0.1
    return clamp(score)


def behavior_score(metrics: BehaviorMetrics | None) -> float:
    """
    Explanatory consistency heuristic. Not part of the aggregate.

    Starts at a neutral 50 and moves with success rate, punctuality,
    delivery timeliness and dispute rate.
    """
    if metrics is None:
        return NEUTRAL_SCORE

    score = NEUTRAL_SCORE
    if metrics.success_rate > 90:
        score += 20
    elif metrics.success_rate > 70:
        score += 10

    if metrics.payment_punctuality > 90:
        score += 15
    elif metrics.payment_punctuality > 70:
        score += 7

    if metrics.delivery_timeliness > 90:
        score += 15
    elif metrics.delivery_timeliness > 70:
        score += 7

    if metrics.dispute_rate > 0.1:
        score -= 20
    elif metrics.dispute_rate > 0.05:
        score -= 10

    return clamp(score)


def compute_dimensions(
    kyc: KycRecord | None,
    is_verified: bool,
    is_active: bool,
    behavior: BehaviorMetrics | None,
    readiness: ReadinessMetrics | None,
) -> DimensionScores:
    return DimensionScores(
        identity=identity_trust(kyc, is_verified, is_active),
        transaction=transaction_trust(behavior),
        financial=financial_trust(behavior),
        performance=performance_trust(behavior),
        learning=learning_trust(readiness),
    )


def aggregate(dims: DimensionScores) -> float:
    values = dims.as_dict()
    return clamp(sum(values[name] * WEIGHTS[name] for name in DIMENSIONS))


# ─── Adjustments ─────────────────────────────────────────────────────


def shift_dimensions(dims: DimensionScores, delta: float) -> DimensionScores:
    """
    Move the aggregate by `delta` points by spreading it over the dimensions.

    Each dimension moves in proportion to its weight. Dimensions that hit
    0 or 100 drop out and the remainder is redistributed over the rest, so
    the aggregate moves by exactly `delta` unless every dimension saturates.
    """
    values = dims.as_dict()
    remaining = delta

    for _ in range(len(DIMENSIONS)):
        if abs(remaining) < 1e-9:
            break
        free = [
            name for name in DIMENSIONS
            if (remaining > 0 and values[name] < 100.0) or (remaining < 0 and values[name] > 0.0)
        ]
        if not free:
            break

        weight_sum = sum(WEIGHTS[name] for name in free)
        step = remaining / weight_sum
        moved = 0.0
        for name in free:
            before = values[name]
            values[name] = clamp(before + step)
            moved += (values[name] - before) * WEIGHTS[name]
        remaining -= moved

    return DimensionScores.from_mapping(values)


def apply_offsets(dims: DimensionScores, offsets: dict[str, float]) -> DimensionScores:
    values = dims.as_dict()
    return DimensionScores.from_mapping(
        {name: clamp(values[name] + offsets.get(name, 0.0)) for name in DIMENSIONS}
    )


def merge_offsets(
    offsets: dict[str, float],
    before: DimensionScores,
    after: DimensionScores,
) -> dict[str, float]:
    """Fold the per-dimension movement between two states into the stored offsets."""
    old = before.as_dict()
    new = after.as_dict()
    merged = dict(offsets)
    for name in DIMENSIONS:
        change = new[name] - old[name]
        if change:
            merged[name] = clamp(merged.get(name, 0.0) + change, -100.0, 100.0)
    return {name: value for name, value in merged.items() if abs(value) > 1e-9}


# ─── Decay / recovery ────────────────────────────────────────────────


def decay_rate(days_inactive: float) -> float:
    """Points lost per month for the given inactivity; 0 below 30 days."""
    for lower_bound, rate in DECAY_BANDS:
        if days_inactive >= lower_bound:
            return rate
    return 0.0


def recovery_amount(days_inactive: float, activity_value: float = 1.0) -> float:
    """Points regained on renewed activity, capped per event."""
    if days_inactive < INACTIVITY_THRESHOLD_DAYS:
        return 0.0
    return min(decay_rate(days_inactive) * 2 * activity_value, MAX_RECOVERY_PER_EVENT)


__all__ = [
    "DECAY_BANDS",
    "INACTIVITY_THRESHOLD_DAYS",
    "MAX_RECOVERY_PER_EVENT",
    "MIN_DECAY_STEP",
    "NEUTRAL_SCORE",
    "WEIGHTS",
    "aggregate",
    "apply_offsets",
    "behavior_score",
    "clamp",
    "compute_dimensions",
    "decay_rate",
    "financial_trust",
    "identity_trust",
    "learning_trust",
    "merge_offsets",
    "performance_trust",
    "recovery_amount",
    "shift_dimensions",
    "transaction_trust",
]
