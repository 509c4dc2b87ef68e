"""
Trust Score Engine: per-entity trust scores with decay and recovery.

Orchestrates the flow:
1. Fetch raw metrics from the collaborators (identity, behavior, readiness)
2. Compute the five dimensions and the weighted aggregate
3. Persist the score and append audit events to the TrustEventLedger
4. Apply inactivity decay (batch sweep) and recovery (on tracked activity)

Every write to an entity's score runs under the `trust:{entity_id}` lock,
which also serializes decay against recovery for the same entity.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from trustalloc.core.clock import Clock, utcnow
from trustalloc.core.config import Config
from trustalloc.core.exceptions import UnauthorizedError, ValidationError
from trustalloc.core.logging import get_logger
from trustalloc.ledger.ledger import (
    DECAY_RECOVERY_EVENTS,
    CalculationSnapshot,
    TriggerType,
    TrustEvent,
    TrustEventLedger,
    TrustEventType,
)
from trustalloc.ledger.lock import LockService
from trustalloc.metrics.protocols import MetricsProvider
from trustalloc.metrics.types import KycStatus
from trustalloc.storage.base import StorageBackend
from trustalloc.trust import scoring
from trustalloc.trust.bands import band_description, band_for_score
from trustalloc.trust.cache import TrustScoreCache
from trustalloc.trust.types import (
    DecayBatchResult,
    DimensionExplanation,
    DimensionScores,
    TrustExplanation,
    TrustScore,
)

logger = get_logger("trust.engine")

LOCK_SCOPE = "trust"

# Changes smaller than this are persisted but not written to the ledger
SIGNIFICANT_CHANGE = 1.0


class TrustScoreEngine:
    """
    Computes, caches and adjusts entity trust scores.

    Usage:
        engine = TrustScoreEngine(storage, metrics)
        score = await engine.get_trust_score("user-42")
        explanation = await engine.explain_trust_score("user-42")
    """

    COLLECTION = "trust_scores"

    def __init__(
        self,
        storage: StorageBackend,
        metrics: MetricsProvider,
        ledger: TrustEventLedger | None = None,
        cache: TrustScoreCache | None = None,
        locks: LockService | None = None,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._storage = storage
        self._metrics = metrics
        self._config = config or Config()
        self._clock = clock
        self._ledger = ledger or TrustEventLedger(storage)
        self._cache = cache or TrustScoreCache(
            storage, ttl=self._config.cache_ttl_seconds, clock=clock
        )
        self._locks = locks or LockService(
            storage,
            ttl=self._config.lock_ttl_seconds,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
        )

    @property
    def ledger(self) -> TrustEventLedger:
        return self._ledger

    @property
    def cache(self) -> TrustScoreCache:
        return self._cache

    # ─── Persistence ─────────────────────────────────────────────────

    async def _load(self, entity_id: str) -> TrustScore | None:
        data = await self._storage.get(self.COLLECTION, entity_id)
        return TrustScore.from_dict(data) if data else None

    async def _save(self, score: TrustScore) -> None:
        await self._storage.save(self.COLLECTION, score.entity_id, score.to_dict())
        await self._cache.invalidate(score.entity_id)

    async def get_or_create(self, entity_id: str) -> TrustScore:
        """Load the entity's score, creating an all-zero one on first reference."""
        if not entity_id:
            raise ValidationError("entity_id is required")
        async with self._locks.hold(LOCK_SCOPE, entity_id):
            return await self._load_or_create(entity_id)

    async def _load_or_create(self, entity_id: str) -> TrustScore:
        # Caller holds the trust lock
        if not entity_id:
            raise ValidationError("entity_id is required")
        existing = await self._load(entity_id)
        if existing is not None:
            return existing

        score = TrustScore(entity_id=entity_id)
        await self._storage.save(self.COLLECTION, entity_id, score.to_dict())
        logger.info(f"Created trust score for {entity_id}")
        return score

    def _is_stale(self, score: TrustScore) -> bool:
        if score.last_calculated_at is None:
            return True
        age = self._clock() - score.last_calculated_at
        return age > timedelta(hours=self._config.score_staleness_hours)

    # ─── Calculation ─────────────────────────────────────────────────

    async def _compute(self, entity_id: str) -> tuple[DimensionScores, float]:
        kyc, verified, active, behavior, readiness = await asyncio.gather(
            self._metrics.get_kyc_status(entity_id),
            self._metrics.is_verified(entity_id),
            self._metrics.is_active(entity_id),
            self._metrics.get_behavior_metrics(entity_id),
            self._metrics.get_readiness_metrics(entity_id),
        )
        dims = scoring.compute_dimensions(kyc, verified, active, behavior, readiness)
        return dims, scoring.behavior_score(behavior)

    async def recalculate(
        self,
        entity_id: str,
        trigger_type: TriggerType = TriggerType.AUTOMATIC,
        trigger_entity_id: str | None = None,
        trigger_entity_type: str | None = None,
    ) -> TrustScore:
        """
        Recompute all dimensions from the collaborators' current metrics.

        Offsets left by decay, recovery and manual adjustments are re-applied
        on top of the metric-derived dimensions. An UPDATED event is written
        only when the aggregate moves by at least one point.
        """
        if not entity_id:
            raise ValidationError("entity_id is required")
        async with self._locks.hold(LOCK_SCOPE, entity_id):
            return await self._recalculate(
                entity_id, trigger_type, trigger_entity_id, trigger_entity_type
            )

    async def _recalculate(
        self,
        entity_id: str,
        trigger_type: TriggerType,
        trigger_entity_id: str | None,
        trigger_entity_type: str | None,
    ) -> TrustScore:
        # Caller holds the trust lock
        score = await self._load_or_create(entity_id)
        raw, behavior = await self._compute(entity_id)
        dims = scoring.apply_offsets(raw, score.adjustments)

        previous = score.trust_score
        now = self._clock()
        score.set_dimensions(dims)
        score.behavior_score = behavior
        score.trust_score = scoring.aggregate(dims)
        score.last_calculated_at = now
        await self._save(score)

        change = score.trust_score - previous
        if abs(change) >= SIGNIFICANT_CHANGE:
            await self._ledger.record(
                entity_id=entity_id,
                event_type=TrustEventType.UPDATED,
                previous_score=previous,
                new_score=score.trust_score,
                trigger_type=trigger_type,
                trigger_entity_id=trigger_entity_id,
                trigger_entity_type=trigger_entity_type,
                reason=f"Trust score recalculated ({trigger_type.value})",
                created_at=now,
                snapshot=CalculationSnapshot(
                    dimensions=dims.as_dict(), behavior_score=behavior
                ),
            )
            logger.info(
                f"Trust score for {entity_id}: {previous:.2f} -> {score.trust_score:.2f}"
            )
        else:
            logger.debug(
                f"Trust score for {entity_id} changed by {change:.2f}, below event threshold"
            )

        await self._check_threshold(entity_id, previous, score.trust_score, trigger_type, now)
        return score

    async def get_trust_score(self, entity_id: str) -> TrustScore:
        """
        Current trust score, recalculated only when stale.

        A score calculated within the staleness window is returned as stored
        (through the cache) without touching the collaborators. The cache is
        filled under the trust lock, so a concurrent write cannot be
        overwritten by the score read before it.
        """
        if not entity_id:
            raise ValidationError("entity_id is required")
        cached = await self._cache.get(entity_id)
        if cached is not None and not self._is_stale(cached):
            return cached

        async with self._locks.hold(LOCK_SCOPE, entity_id):
            score = await self._load_or_create(entity_id)
            if self._is_stale(score):
                score = await self._recalculate(entity_id, TriggerType.AUTOMATIC, None, None)
            await self._cache.set(score)
            return score

    async def get_score_value(self, entity_id: str) -> float:
        return (await self.get_trust_score(entity_id)).trust_score

    async def explain_trust_score(self, entity_id: str) -> TrustExplanation:
        """Dimension breakdown with human-readable factors."""
        score = await self.get_trust_score(entity_id)
        kyc, verified, active, behavior, readiness = await asyncio.gather(
            self._metrics.get_kyc_status(entity_id),
            self._metrics.is_verified(entity_id),
            self._metrics.is_active(entity_id),
            self._metrics.get_behavior_metrics(entity_id),
            self._metrics.get_readiness_metrics(entity_id),
        )

        kyc_status = kyc.status if kyc else KycStatus.NOT_STARTED
        identity = [
            f"KYC {kyc_status.value.replace('_', ' ').title()}",
            "Verified Account" if verified else "Unverified Account",
            "Active Account" if active else "Inactive Account",
        ]
        if kyc and kyc.documents_complete:
            identity.append("KYC Documents Complete")

        if behavior:
            transaction = [
                f"Transaction Success Rate: {behavior.success_rate:.1f}%",
                f"Payment Punctuality: {behavior.payment_punctuality:.1f}%",
                f"Delivery Timeliness: {behavior.delivery_timeliness:.1f}%",
            ]
            financial = [
                f"Payment Punctuality: {behavior.payment_punctuality:.1f}%",
                f"Escrow Success Rate: {behavior.escrow_success_rate:.1f}%",
            ]
            performance = [
                f"Delivery Timeliness: {behavior.delivery_timeliness:.1f}%",
                f"Dispute Rate: {behavior.dispute_rate * 100:.1f}%",
            ]
        else:
            transaction = ["No transaction history"]
            financial = ["No payment history"]
            performance = ["No performance history"]

        if readiness:
            quiz = (
                f"{readiness.quiz_average_score:.1f}%"
                if readiness.quiz_average_score is not None
                else "N/A"
            )
            learning = [
                f"Courses Completed: {readiness.courses_completed}",
                f"Certifications: {readiness.certifications_earned}",
                f"Quiz Average: {quiz}",
            ]
        else:
            learning = ["No learning history"]

        breakdown = {
            "identity": DimensionExplanation(score.identity_trust, identity),
            "transaction": DimensionExplanation(score.transaction_trust, transaction),
            "financial": DimensionExplanation(score.financial_trust, financial),
            "performance": DimensionExplanation(score.performance_trust, performance),
            "learning": DimensionExplanation(score.learning_trust, learning),
        }
        for name, offset in score.adjustments.items():
            breakdown[name].factors.append(f"Adjustments: {offset:+.1f}")

        band = band_for_score(score.trust_score)
        return TrustExplanation(
            entity_id=entity_id,
            overall_score=score.trust_score,
            band=band.value,
            band_description=band_description(band),
            breakdown=breakdown,
            behavior_score=score.behavior_score,
            last_updated=score.last_calculated_at,
        )

    # ─── History ─────────────────────────────────────────────────────

    async def get_trust_history(
        self,
        entity_id: str,
        limit: int = 50,
        from_date: datetime | None = None,
    ) -> list[TrustEvent]:
        return await self._ledger.history(entity_id, from_date=from_date, limit=limit)

    async def get_decay_recovery_history(
        self,
        entity_id: str,
        limit: int = 50,
    ) -> list[TrustEvent]:
        return await self._ledger.history(
            entity_id, event_types=DECAY_RECOVERY_EVENTS, limit=limit
        )

    # ─── Adjustments ─────────────────────────────────────────────────

    def _shift(self, score: TrustScore, delta: float) -> float:
        """Move the aggregate by `delta`, keeping it the weighted sum of dimensions."""
        previous = score.trust_score
        before = score.dimensions
        after = scoring.shift_dimensions(before, delta)
        score.set_dimensions(after)
        score.adjustments = scoring.merge_offsets(score.adjustments, before, after)
        score.trust_score = scoring.aggregate(after)
        return previous

    async def _check_threshold(
        self,
        entity_id: str,
        previous: float,
        new: float,
        trigger_type: TriggerType,
        now: datetime,
    ) -> None:
        threshold = self._config.trust_alert_threshold
        if previous >= threshold > new:
            await self._ledger.record(
                entity_id=entity_id,
                event_type=TrustEventType.THRESHOLD_BREACHED,
                previous_score=previous,
                new_score=new,
                trigger_type=trigger_type,
                reason=f"Trust score fell below {threshold:g}",
                created_at=now,
                snapshot=CalculationSnapshot(threshold=threshold),
            )
            logger.warning(
                f"Trust score for {entity_id} fell below {threshold:g} ({previous:.2f} -> {new:.2f})"
            )

    async def adjust_trust_score(
        self,
        entity_id: str,
        delta: float,
        reason: str,
        admin_id: str,
    ) -> TrustScore:
        """
        Manual adjustment by an administrator.

        Raises:
            UnauthorizedError: If `admin_id` is not an administrator
        """
        if not await self._metrics.is_admin(admin_id):
            raise UnauthorizedError(
                f"{admin_id} is not allowed to adjust trust scores",
                actor_id=admin_id,
            )

        async with self._locks.hold(LOCK_SCOPE, entity_id):
            now = self._clock()
            score = await self._load_or_create(entity_id)
            previous = self._shift(score, delta)
            await self._save(score)
            await self._ledger.record(
                entity_id=entity_id,
                event_type=TrustEventType.MANUAL_ADJUSTMENT,
                previous_score=previous,
                new_score=score.trust_score,
                change_amount=delta,
                trigger_type=TriggerType.MANUAL,
                trigger_entity_id=admin_id,
                trigger_entity_type="ADMIN",
                reason=f"Manual adjustment by admin. Reason: {reason}",
                created_at=now,
            )
            logger.info(
                f"Admin {admin_id} adjusted trust score for {entity_id} by {delta:+.2f}: "
                f"{previous:.2f} -> {score.trust_score:.2f}"
            )
            await self._check_threshold(entity_id, previous, score.trust_score, TriggerType.MANUAL, now)
            return score

    # ─── Decay / recovery ────────────────────────────────────────────

    async def _days_inactive(self, entity_id: str, now: datetime, max_days: int) -> int:
        last_activity = await self._metrics.get_last_activity_at(entity_id)
        if last_activity is None:
            return max_days
        return min(max((now - last_activity).days, 0), max_days)

    async def apply_decay(self, entity_id: str, max_days: int | None = None) -> TrustScore:
        """Apply one monthly inactivity decay step to an entity."""
        score, _ = await self._apply_decay(entity_id, max_days)
        return score

    async def _apply_decay(
        self,
        entity_id: str,
        max_days: int | None = None,
    ) -> tuple[TrustScore, bool]:
        cap = max_days or self._config.decay_max_days

        async with self._locks.hold(LOCK_SCOPE, entity_id):
            now = self._clock()
            score = await self._load_or_create(entity_id)

            interval = timedelta(days=scoring.INACTIVITY_THRESHOLD_DAYS)
            if score.last_decay_at is not None and now - score.last_decay_at < interval:
                logger.debug(f"Decay for {entity_id} already applied this month")
                return score, False

            days = await self._days_inactive(entity_id, now, cap)
            rate = scoring.decay_rate(days)
            decrement = min(rate, score.trust_score)
            if decrement < scoring.MIN_DECAY_STEP:
                logger.debug(f"No decay for {entity_id} ({days} days inactive)")
                return score, False

            previous = self._shift(score, -decrement)
            score.last_decay_at = now
            await self._save(score)
            await self._ledger.record(
                entity_id=entity_id,
                event_type=TrustEventType.DECAY_APPLIED,
                previous_score=previous,
                new_score=score.trust_score,
                trigger_type=TriggerType.AUTOMATIC,
                reason=f"Trust decay applied due to inactivity ({days} days). Decay: -{decrement:.2f}",
                created_at=now,
                snapshot=CalculationSnapshot(days_inactive=days, decay_rate=rate),
            )
            logger.info(
                f"Decayed trust score for {entity_id} by {decrement:.2f} after {days} days inactive"
            )
            await self._check_threshold(
                entity_id, previous, score.trust_score, TriggerType.AUTOMATIC, now
            )
            return score, True

    async def track_activity(
        self,
        entity_id: str,
        activity_type: TriggerType = TriggerType.BEHAVIOR,
        activity_value: float = 1.0,
    ) -> TrustScore:
        """
        Record activity, recovering score if the entity had gone inactive.

        The last-activity timestamp is always updated, whether or not
        recovery applies.
        """
        if activity_value < 0:
            raise ValidationError("activity_value must not be negative")

        async with self._locks.hold(LOCK_SCOPE, entity_id):
            now = self._clock()
            score = await self._load_or_create(entity_id)
            last_activity = await self._metrics.get_last_activity_at(entity_id)
            await self._metrics.set_last_activity_at(entity_id, now)

            if last_activity is None:
                return score

            days = max((now - last_activity).days, 0)
            amount = scoring.recovery_amount(days, activity_value)
            if amount <= 0:
                return score

            previous = self._shift(score, amount)
            if score.trust_score == previous:
                return score

            await self._save(score)
            await self._ledger.record(
                entity_id=entity_id,
                event_type=TrustEventType.RECOVERY_EVENT,
                previous_score=previous,
                new_score=score.trust_score,
                trigger_type=activity_type,
                reason=f"Trust recovery after {days} days of inactivity. Recovery: +{score.trust_score - previous:.2f}",
                created_at=now,
                snapshot=CalculationSnapshot(
                    days_inactive=days,
                    decay_rate=scoring.decay_rate(days),
                    activity_type=activity_type.value,
                    activity_value=activity_value,
                ),
            )
            logger.info(
                f"Recovered trust score for {entity_id}: {previous:.2f} -> {score.trust_score:.2f}"
            )
            return score

    async def _is_decay_candidate(self, entity_id: str, score: TrustScore, now: datetime) -> bool:
        interval = timedelta(days=scoring.INACTIVITY_THRESHOLD_DAYS)
        if score.last_decay_at is not None and now - score.last_decay_at < interval:
            return False
        if not await self._metrics.is_active(entity_id):
            return False
        last_activity = await self._metrics.get_last_activity_at(entity_id)
        return last_activity is None or now - last_activity >= interval

    async def process_trust_decay_batch(
        self,
        batch_size: int | None = None,
        max_days: int | None = None,
        after: str | None = None,
    ) -> DecayBatchResult:
        """
        Sweep inactive entities and apply decay, one locked step per entity.

        Entities are visited in entity-id order after the `after` cursor. A
        failure on one entity is logged and counted, never propagated.
        Pass the returned `next_cursor` to continue; None means the sweep
        reached the end.
        """
        size = batch_size or self._config.decay_batch_size
        cap = max_days or self._config.decay_max_days
        if size <= 0:
            raise ValidationError("batch_size must be positive")

        now = self._clock()
        records = await self._storage.query(self.COLLECTION)
        entity_ids = sorted(r["entity_id"] for r in records if not after or r["entity_id"] > after)

        result = DecayBatchResult()
        for entity_id in entity_ids:
            if result.processed >= size:
                break
            try:
                score = await self._load(entity_id)
                if score is None or not await self._is_decay_candidate(entity_id, score, now):
                    continue
                result.processed += 1
                result.next_cursor = entity_id
                _, decayed = await self._apply_decay(entity_id, cap)
                if decayed:
                    result.decayed += 1
            except Exception as e:
                if result.next_cursor != entity_id:
                    result.processed += 1
                    result.next_cursor = entity_id
                result.errors += 1
                logger.error(f"Trust decay failed for {entity_id}: {e}")
        else:
            result.next_cursor = None

        logger.info(
            f"Decay batch: processed={result.processed} decayed={result.decayed} "
            f"errors={result.errors}"
        )
        return result


__all__ = ["TrustScoreEngine", "LOCK_SCOPE"]
