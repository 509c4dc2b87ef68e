"""
Tests for TrustScoreEngine: calculation, caching, explanation and
manual adjustments.
"""

import pytest

from trustalloc.core.exceptions import UnauthorizedError, ValidationError
from trustalloc.ledger import TriggerType, TrustEventType
from trustalloc.metrics.types import BehaviorMetrics, KycRecord, KycStatus, ReadinessMetrics


async def give_full_metrics(metrics, entity_id: str) -> None:
    await metrics.set_profile(entity_id, is_verified=True, is_active=True)
    await metrics.set_kyc(
        entity_id,
        KycRecord(KycStatus.APPROVED, document_type="passport", document_number="A123"),
    )
    await metrics.set_behavior_metrics(
        entity_id,
        BehaviorMetrics(
            total_transactions=10,
            successful_transactions=9,
            payment_punctuality=80.0,
            delivery_timeliness=70.0,
            dispute_rate=0.05,
            escrow_success_rate=90.0,
            total_escrows=4,
            total_payments=12,
            total_deliveries=6,
        ),
    )
    await metrics.set_readiness_metrics(
        entity_id,
        ReadinessMetrics(
            courses_completed=10,
            certifications_earned=2,
            quiz_average_score=80.0,
            documentation_readiness=50.0,
        ),
    )


class TestRecalculate:
    @pytest.mark.asyncio
    async def test_new_entity_without_metrics(self, trust_engine):
        score = await trust_engine.recalculate("user-1")

        # Neutral 50 on transaction, financial and performance; nothing else
        assert score.identity_trust == 0.0
        assert score.transaction_trust == 50.0
        assert score.learning_trust == 0.0
        assert score.trust_score == pytest.approx(30.0)
        assert score.behavior_score == 50.0

    @pytest.mark.asyncio
    async def test_full_metrics(self, trust_engine, metrics):
        await give_full_metrics(metrics, "user-1")

        score = await trust_engine.recalculate("user-1")

        assert score.identity_trust == 100.0
        assert score.transaction_trust == pytest.approx(86.0)
        assert score.financial_trust == pytest.approx(82.0)
        assert score.performance_trust == pytest.approx(76.5)
        assert score.learning_trust == pytest.approx(81.0)
        assert score.trust_score == pytest.approx(87.0)
        assert score.behavior_score == 67.0

    @pytest.mark.asyncio
    async def test_records_updated_event_with_snapshot(self, trust_engine, metrics):
        await give_full_metrics(metrics, "user-1")

        await trust_engine.recalculate(
            "user-1", TriggerType.PAYMENT, trigger_entity_id="pay-1", trigger_entity_type="PAYMENT"
        )

        events = await trust_engine.get_trust_history("user-1")
        assert len(events) == 1
        event = events[0]
        assert event.event_type == TrustEventType.UPDATED
        assert event.previous_score == 0.0
        assert event.new_score == pytest.approx(87.0)
        assert event.trigger_type == TriggerType.PAYMENT
        assert event.trigger_entity_id == "pay-1"
        assert event.snapshot.dimensions["identity"] == 100.0

    @pytest.mark.asyncio
    async def test_small_change_is_not_recorded(self, trust_engine):
        await trust_engine.recalculate("user-1")
        await trust_engine.recalculate("user-1")

        events = await trust_engine.get_trust_history("user-1")
        assert [e.event_type for e in events] == [TrustEventType.UPDATED]

    @pytest.mark.asyncio
    async def test_empty_entity_id_rejected(self, trust_engine):
        with pytest.raises(ValidationError):
            await trust_engine.recalculate("")


class TestGetTrustScore:
    @pytest.mark.asyncio
    async def test_first_read_calculates(self, trust_engine, metrics):
        await give_full_metrics(metrics, "user-1")

        score = await trust_engine.get_trust_score("user-1")

        assert score.trust_score == pytest.approx(87.0)
        assert score.last_calculated_at is not None

    @pytest.mark.asyncio
    async def test_fresh_score_is_not_recalculated(self, trust_engine, metrics, clock):
        first = await trust_engine.get_trust_score("user-1")
        await give_full_metrics(metrics, "user-1")
        clock.advance(hours=23)

        second = await trust_engine.get_trust_score("user-1")

        assert second.trust_score == first.trust_score
        assert second.last_calculated_at == first.last_calculated_at

    @pytest.mark.asyncio
    async def test_score_exactly_at_staleness_window_is_fresh(self, trust_engine, metrics, clock):
        first = await trust_engine.get_trust_score("user-1")
        await give_full_metrics(metrics, "user-1")
        clock.advance(hours=24)

        second = await trust_engine.get_trust_score("user-1")

        assert second.trust_score == first.trust_score
        assert second.last_calculated_at == first.last_calculated_at

    @pytest.mark.asyncio
    async def test_stale_score_is_recalculated(self, trust_engine, metrics, clock):
        await trust_engine.get_trust_score("user-1")
        await give_full_metrics(metrics, "user-1")
        clock.advance(hours=24, seconds=1)

        score = await trust_engine.get_trust_score("user-1")

        assert score.trust_score == pytest.approx(87.0)
        assert score.last_calculated_at == clock.now

    @pytest.mark.asyncio
    async def test_repeated_reads_write_no_events(self, trust_engine):
        await trust_engine.get_trust_score("user-1")
        for _ in range(3):
            await trust_engine.get_trust_score("user-1")

        assert await trust_engine.ledger.count("user-1") == 1

    @pytest.mark.asyncio
    async def test_reads_go_through_cache(self, trust_engine):
        await trust_engine.get_trust_score("user-1")

        cached = await trust_engine.cache.get("user-1")
        assert cached is not None
        assert cached.trust_score == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_score_value(self, trust_engine, seed_trust):
        await seed_trust("user-1", 72.0)
        assert await trust_engine.get_score_value("user-1") == 72.0


class TestExplain:
    @pytest.mark.asyncio
    async def test_full_breakdown(self, trust_engine, metrics):
        await give_full_metrics(metrics, "user-1")

        explanation = await trust_engine.explain_trust_score("user-1")

        assert explanation.overall_score == pytest.approx(87.0)
        assert explanation.band == "T4"
        assert explanation.band_description.startswith("Preferred")
        assert set(explanation.breakdown) == {
            "identity", "transaction", "financial", "performance", "learning",
        }
        identity = explanation.breakdown["identity"]
        assert identity.score == 100.0
        assert "KYC Approved" in identity.factors
        assert "Verified Account" in identity.factors
        assert "KYC Documents Complete" in identity.factors
        assert "Transaction Success Rate: 90.0%" in explanation.breakdown["transaction"].factors
        assert "Courses Completed: 10" in explanation.breakdown["learning"].factors

    @pytest.mark.asyncio
    async def test_without_history(self, trust_engine):
        explanation = await trust_engine.explain_trust_score("user-1")

        assert explanation.band == "T1"
        assert "KYC Not Started" in explanation.breakdown["identity"].factors
        assert explanation.breakdown["transaction"].factors == ["No transaction history"]
        assert explanation.breakdown["learning"].factors == ["No learning history"]

    @pytest.mark.asyncio
    async def test_lists_adjustments(self, trust_engine, metrics, seed_trust):
        await seed_trust("user-1", 50.0)
        await metrics.set_profile("admin-1", is_admin=True)
        await trust_engine.adjust_trust_score("user-1", -5.0, "late delivery", "admin-1")

        explanation = await trust_engine.explain_trust_score("user-1")

        assert "Adjustments: -5.0" in explanation.breakdown["identity"].factors


class TestAdjustTrustScore:
    @pytest.mark.asyncio
    async def test_requires_admin(self, trust_engine, metrics, seed_trust):
        await seed_trust("user-1", 50.0)
        await metrics.set_profile("not-admin", is_admin=False)

        with pytest.raises(UnauthorizedError):
            await trust_engine.adjust_trust_score("user-1", 5.0, "bonus", "not-admin")

        assert await trust_engine.ledger.count("user-1") == 0

    @pytest.mark.asyncio
    async def test_admin_adjustment(self, trust_engine, metrics, seed_trust):
        await seed_trust("user-1", 60.0)
        await metrics.set_profile("admin-1", is_admin=True)

        score = await trust_engine.adjust_trust_score("user-1", -10.0, "fraud review", "admin-1")

        assert score.trust_score == pytest.approx(50.0)
        events = await trust_engine.get_trust_history("user-1")
        assert len(events) == 1
        event = events[0]
        assert event.event_type == TrustEventType.MANUAL_ADJUSTMENT
        assert event.change_amount == -10.0
        assert event.trigger_type == TriggerType.MANUAL
        assert event.trigger_entity_id == "admin-1"
        assert event.trigger_entity_type == "ADMIN"
        assert "fraud review" in event.reason

    @pytest.mark.asyncio
    async def test_adjustment_survives_recalculation(self, trust_engine, metrics):
        await trust_engine.recalculate("user-1")
        await metrics.set_profile("admin-1", is_admin=True)
        await trust_engine.adjust_trust_score("user-1", 5.0, "bonus", "admin-1")

        score = await trust_engine.recalculate("user-1")

        assert score.trust_score == pytest.approx(35.0)

    @pytest.mark.asyncio
    async def test_clamped_at_bounds(self, trust_engine, metrics, seed_trust):
        await seed_trust("user-1", 98.0)
        await metrics.set_profile("admin-1", is_admin=True)

        score = await trust_engine.adjust_trust_score("user-1", 50.0, "bonus", "admin-1")

        assert score.trust_score == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_aggregate_stays_weighted_sum(self, trust_engine, metrics, seed_trust):
        from trustalloc.trust import scoring

        await seed_trust("user-1", 60.0)
        await metrics.set_profile("admin-1", is_admin=True)

        score = await trust_engine.adjust_trust_score("user-1", -7.5, "review", "admin-1")

        assert score.trust_score == pytest.approx(scoring.aggregate(score.dimensions))


class TestThresholdAlert:
    @pytest.mark.asyncio
    async def test_breach_recorded_when_crossing_downward(
        self, trust_engine, metrics, seed_trust
    ):
        await seed_trust("user-1", 45.0)
        await metrics.set_profile("admin-1", is_admin=True)

        await trust_engine.adjust_trust_score("user-1", -10.0, "dispute", "admin-1")

        breaches = await trust_engine.ledger.count("user-1", TrustEventType.THRESHOLD_BREACHED)
        assert breaches == 1

    @pytest.mark.asyncio
    async def test_no_breach_when_already_below(self, trust_engine, metrics, seed_trust):
        await seed_trust("user-1", 35.0)
        await metrics.set_profile("admin-1", is_admin=True)

        await trust_engine.adjust_trust_score("user-1", -5.0, "dispute", "admin-1")

        breaches = await trust_engine.ledger.count("user-1", TrustEventType.THRESHOLD_BREACHED)
        assert breaches == 0
