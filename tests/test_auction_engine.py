"""
Tests for AuctionEngine: lifecycle, bidding rules, clearing and listing.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from trustalloc.core.exceptions import (
    InsufficientTrustError,
    InvalidStateError,
    NotFoundError,
    ReservePriceViolation,
    UnauthorizedError,
    ValidationError,
)
from trustalloc.core.types import AuctionStatus, AuctionType, BidStatus, ClearingMethod


@pytest.fixture
def open_auction(auction_engine, clock):
    """Create and start an auction running for seven days from now."""

    async def make(**options):
        auction = await auction_engine.create_auction(
            options.pop("auction_type", AuctionType.CAPITAL),
            options.pop("title", "Series A working capital"),
            clock.now,
            clock.now + timedelta(days=7),
            **options,
        )
        return await auction_engine.start_auction(auction.id)

    return make


class TestCreateAuction:
    @pytest.mark.asyncio
    async def test_created_pending(self, auction_engine, clock):
        auction = await auction_engine.create_auction(
            AuctionType.SUPPLY_CONTRACT,
            "Cement supply",
            clock.now + timedelta(days=1),
            clock.now + timedelta(days=8),
            reserve_price="500000",
            trust_weight="1.5",
        )

        assert auction.status == AuctionStatus.PENDING
        assert auction.reserve_price == Decimal("500000")
        assert auction.trust_weight == Decimal("1.5")
        assert auction.clearing_method == ClearingMethod.FIRST_PRICE
        assert (await auction_engine.get_auction(auction.id)).title == "Cement supply"

    @pytest.mark.asyncio
    async def test_start_in_past_rejected(self, auction_engine, clock):
        with pytest.raises(ValidationError):
            await auction_engine.create_auction(
                AuctionType.CAPITAL, "Late", clock.now - timedelta(hours=1), clock.now
            )

    @pytest.mark.asyncio
    async def test_end_must_follow_start(self, auction_engine, clock):
        with pytest.raises(ValidationError):
            await auction_engine.create_auction(
                AuctionType.CAPITAL, "Backwards", clock.now, clock.now
            )

    @pytest.mark.asyncio
    async def test_naive_datetimes_rejected(self, auction_engine):
        with pytest.raises(ValidationError):
            await auction_engine.create_auction(
                AuctionType.CAPITAL, "Naive", datetime(2030, 1, 1), datetime(2030, 1, 2)
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "options",
        [
            {"trust_weight": "-0.1"},
            {"reserve_price": "-1"},
            {"target_amount": "-5"},
            {"min_trust_score": 120.0},
            {"trust_weight": "abc"},
            {"reserve_price": float("nan")},
            {"target_amount": "Infinity"},
            {"min_trust_score": float("nan")},
        ],
    )
    async def test_invalid_amounts(self, auction_engine, clock, options):
        with pytest.raises(ValidationError):
            await auction_engine.create_auction(
                AuctionType.CAPITAL, "Bad", clock.now, clock.now + timedelta(days=1), **options
            )

    @pytest.mark.asyncio
    async def test_unknown_auction(self, auction_engine):
        with pytest.raises(NotFoundError):
            await auction_engine.get_auction("missing")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_waits_for_start_time(self, auction_engine, clock):
        auction = await auction_engine.create_auction(
            AuctionType.CAPITAL, "Later", clock.now + timedelta(hours=2), clock.now + timedelta(days=2)
        )
        with pytest.raises(InvalidStateError):
            await auction_engine.start_auction(auction.id)

        clock.advance(hours=2)
        started = await auction_engine.start_auction(auction.id)
        assert started.status == AuctionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_start_twice_rejected(self, auction_engine, open_auction):
        auction = await open_auction()
        with pytest.raises(InvalidStateError):
            await auction_engine.start_auction(auction.id)

    @pytest.mark.asyncio
    async def test_bid_on_pending_auction_rejected(self, auction_engine, clock, seed_trust):
        await seed_trust("supplier-1", 70.0)
        auction = await auction_engine.create_auction(
            AuctionType.CAPITAL, "Pending", clock.now + timedelta(hours=1), clock.now + timedelta(days=1)
        )
        with pytest.raises(InvalidStateError):
            await auction_engine.place_bid(auction.id, "supplier-1", "1000")

    @pytest.mark.asyncio
    async def test_close_before_end_rejected(self, auction_engine, open_auction):
        auction = await open_auction()
        with pytest.raises(InvalidStateError):
            await auction_engine.close_auction(auction.id)

    @pytest.mark.asyncio
    async def test_close_without_bids(self, auction_engine, open_auction, clock):
        auction = await open_auction()
        clock.advance(days=7)

        result = await auction_engine.close_auction(auction.id)

        assert result.auction.status == AuctionStatus.CLOSED
        assert result.cleared_price is None
        assert result.accepted_bid_ids == []

    @pytest.mark.asyncio
    async def test_closed_auction_is_final(self, auction_engine, open_auction, clock):
        auction = await open_auction()
        clock.advance(days=7)
        await auction_engine.close_auction(auction.id)

        with pytest.raises(InvalidStateError):
            await auction_engine.close_auction(auction.id)
        with pytest.raises(InvalidStateError):
            await auction_engine.cancel_auction(auction.id)
        with pytest.raises(InvalidStateError):
            await auction_engine.place_bid(auction.id, "supplier-1", "1000")

    @pytest.mark.asyncio
    async def test_cancel_rejects_pending_bids(
        self, auction_engine, open_auction, seed_trust
    ):
        await seed_trust("supplier-1", 70.0)
        auction = await open_auction()
        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000")

        cancelled = await auction_engine.cancel_auction(auction.id, reason="scope changed")

        assert cancelled.status == AuctionStatus.CANCELLED
        assert cancelled.metadata["cancel_reason"] == "scope changed"
        assert (await auction_engine.get_bid(bid.id)).status == BidStatus.REJECTED
        with pytest.raises(InvalidStateError):
            await auction_engine.close_auction(auction.id)

    @pytest.mark.asyncio
    async def test_cancel_pending_auction(self, auction_engine, clock):
        auction = await auction_engine.create_auction(
            AuctionType.CAPITAL, "Pending", clock.now + timedelta(hours=1), clock.now + timedelta(days=1)
        )
        cancelled = await auction_engine.cancel_auction(auction.id)
        assert cancelled.status == AuctionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_extend(self, auction_engine, open_auction, clock, seed_trust):
        await seed_trust("supplier-1", 70.0)
        auction = await open_auction()
        new_end = auction.end_time + timedelta(days=3)

        with pytest.raises(ValidationError):
            await auction_engine.extend_auction(auction.id, auction.end_time - timedelta(days=1))

        extended = await auction_engine.extend_auction(auction.id, new_end)
        assert extended.extended_end_time == new_end
        assert extended.effective_end_time == new_end

        clock.advance(days=8)
        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000")
        assert bid.status == BidStatus.PENDING
        with pytest.raises(InvalidStateError):
            await auction_engine.close_auction(auction.id)

    @pytest.mark.asyncio
    async def test_extend_requires_active(self, auction_engine, clock):
        auction = await auction_engine.create_auction(
            AuctionType.CAPITAL, "Pending", clock.now + timedelta(hours=1), clock.now + timedelta(days=1)
        )
        with pytest.raises(InvalidStateError):
            await auction_engine.extend_auction(auction.id, clock.now + timedelta(days=5))


class TestPlaceBid:
    @pytest.mark.asyncio
    async def test_snapshots_trust_and_effective_bid(
        self, auction_engine, open_auction, seed_trust
    ):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction(trust_weight="1.2")

        bid = await auction_engine.place_bid(auction.id, "supplier-1", "900000", amount="5")

        assert bid.status == BidStatus.PENDING
        assert bid.bidder_trust_score == 80.0
        assert bid.effective_bid == Decimal("864000")
        assert bid.amount == Decimal("5")
        assert bid.sequence == 1

    @pytest.mark.asyncio
    async def test_below_minimum_trust(self, auction_engine, open_auction, seed_trust):
        await seed_trust("supplier-1", 50.0)
        auction = await open_auction(min_trust_score=60.0)

        with pytest.raises(InsufficientTrustError) as exc_info:
            await auction_engine.place_bid(auction.id, "supplier-1", "1000")

        assert exc_info.value.required == 60.0
        assert exc_info.value.shortfall == 10.0

    @pytest.mark.asyncio
    async def test_below_reserve(self, auction_engine, open_auction, seed_trust):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction(reserve_price="1000000")

        with pytest.raises(ReservePriceViolation):
            await auction_engine.place_bid(auction.id, "supplier-1", "900000")

        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000000")
        assert bid.price == Decimal("1000000")

    @pytest.mark.asyncio
    async def test_reserve_violation_is_validation_error(
        self, auction_engine, open_auction, seed_trust
    ):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction(reserve_price="10")

        with pytest.raises(ValidationError):
            await auction_engine.place_bid(auction.id, "supplier-1", "5")

    @pytest.mark.asyncio
    async def test_non_positive_price(self, auction_engine, open_auction):
        auction = await open_auction()
        with pytest.raises(ValidationError):
            await auction_engine.place_bid(auction.id, "supplier-1", "0")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price", ["abc", "NaN", float("nan"), float("inf"), "-Infinity"])
    async def test_malformed_price_rejected(self, auction_engine, open_auction, seed_trust, price):
        await seed_trust("supplier-1", 70.0)
        auction = await open_auction()

        with pytest.raises(ValidationError):
            await auction_engine.place_bid(auction.id, "supplier-1", price)

        assert await auction_engine.list_bids(auction.id) == []

    @pytest.mark.asyncio
    async def test_malformed_amount_rejected(self, auction_engine, open_auction, seed_trust):
        await seed_trust("supplier-1", 70.0)
        auction = await open_auction()

        with pytest.raises(ValidationError):
            await auction_engine.place_bid(auction.id, "supplier-1", "1000", amount="lots")

    @pytest.mark.asyncio
    async def test_outside_window(self, auction_engine, open_auction, clock, seed_trust):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction()
        clock.advance(days=7, seconds=1)

        with pytest.raises(InvalidStateError):
            await auction_engine.place_bid(auction.id, "supplier-1", "1000")

    @pytest.mark.asyncio
    async def test_records_bidder_activity(
        self, auction_engine, open_auction, metrics, clock, seed_trust
    ):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction()

        await auction_engine.place_bid(auction.id, "supplier-1", "1000")

        assert await metrics.get_last_activity_at("supplier-1") == clock.now

    @pytest.mark.asyncio
    async def test_activity_failure_does_not_fail_bid(
        self, auction_engine, trust_engine, open_auction, seed_trust, monkeypatch
    ):
        async def broken(*args, **kwargs):
            raise RuntimeError("activity store down")

        monkeypatch.setattr(trust_engine, "track_activity", broken)
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction()

        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000")

        assert bid.status == BidStatus.PENDING

    @pytest.mark.asyncio
    async def test_sequences_unique_under_concurrency(
        self, auction_engine, open_auction, seed_trust
    ):
        auction = await open_auction()
        for i in range(8):
            await seed_trust(f"supplier-{i}", 60.0)

        bids = await asyncio.gather(
            *(auction_engine.place_bid(auction.id, f"supplier-{i}", str(1000 + i)) for i in range(8))
        )

        assert sorted(b.sequence for b in bids) == list(range(1, 9))


class TestWithdrawBid:
    @pytest.mark.asyncio
    async def test_only_bidder_may_withdraw(self, auction_engine, open_auction, seed_trust):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction()
        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000")

        with pytest.raises(UnauthorizedError):
            await auction_engine.withdraw_bid(bid.id, "supplier-2")

        withdrawn = await auction_engine.withdraw_bid(bid.id, "supplier-1")
        assert withdrawn.status == BidStatus.WITHDRAWN
        assert withdrawn.withdrawn_at is not None

    @pytest.mark.asyncio
    async def test_withdraw_twice_rejected(self, auction_engine, open_auction, seed_trust):
        await seed_trust("supplier-1", 80.0)
        auction = await open_auction()
        bid = await auction_engine.place_bid(auction.id, "supplier-1", "1000")
        await auction_engine.withdraw_bid(bid.id, "supplier-1")

        with pytest.raises(InvalidStateError):
            await auction_engine.withdraw_bid(bid.id, "supplier-1")

    @pytest.mark.asyncio
    async def test_unknown_bid(self, auction_engine):
        with pytest.raises(NotFoundError):
            await auction_engine.withdraw_bid("missing", "supplier-1")


class TestCloseAuction:
    @pytest.mark.asyncio
    async def test_trust_weighted_clearing(
        self, auction_engine, open_auction, clock, seed_trust
    ):
        await seed_trust("bidder-1", 80.0)
        await seed_trust("bidder-2", 60.0)
        await seed_trust("bidder-3", 100.0)
        auction = await open_auction()
        b1 = await auction_engine.place_bid(auction.id, "bidder-1", "900000")
        b2 = await auction_engine.place_bid(auction.id, "bidder-2", "950000")
        b3 = await auction_engine.place_bid(auction.id, "bidder-3", "1000000")

        assert [b1.effective_bid, b2.effective_bid, b3.effective_bid] == [
            Decimal("720000"), Decimal("570000"), Decimal("1000000"),
        ]

        clock.advance(days=7)
        result = await auction_engine.close_auction(auction.id)

        assert result.cleared_price == Decimal("950000")
        assert result.accepted_bid_ids == [b2.id, b1.id]
        assert result.rejected_bid_ids == [b3.id]
        assert (await auction_engine.get_bid(b1.id)).status == BidStatus.ACCEPTED
        assert (await auction_engine.get_bid(b1.id)).accepted_at == clock.now
        assert (await auction_engine.get_bid(b3.id)).status == BidStatus.REJECTED

        stored = await auction_engine.get_auction(auction.id)
        assert stored.status == AuctionStatus.CLOSED
        assert stored.cleared_price == Decimal("950000")
        assert stored.cleared_at == clock.now

    @pytest.mark.asyncio
    async def test_withdrawn_bids_left_alone(
        self, auction_engine, open_auction, clock, seed_trust
    ):
        await seed_trust("bidder-1", 80.0)
        await seed_trust("bidder-2", 60.0)
        auction = await open_auction()
        gone = await auction_engine.place_bid(auction.id, "bidder-1", "100")
        kept = await auction_engine.place_bid(auction.id, "bidder-2", "500")
        await auction_engine.withdraw_bid(gone.id, "bidder-1")

        clock.advance(days=7)
        result = await auction_engine.close_auction(auction.id)

        assert result.accepted_bid_ids == [kept.id]
        assert (await auction_engine.get_bid(gone.id)).status == BidStatus.WITHDRAWN

    @pytest.mark.asyncio
    async def test_concurrent_closes_succeed_once(self, auction_engine, open_auction, clock):
        auction = await open_auction()
        clock.advance(days=7)

        results = await asyncio.gather(
            auction_engine.close_auction(auction.id),
            auction_engine.close_auction(auction.id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateError)


class TestListAuctions:
    @pytest.mark.asyncio
    async def test_filters_and_pages(self, auction_engine, clock):
        for i in range(3):
            await auction_engine.create_auction(
                AuctionType.CAPITAL, f"Capital {i}", clock.now, clock.now + timedelta(days=1),
                project_id="project-1",
            )
            clock.advance(seconds=1)
        await auction_engine.create_auction(
            AuctionType.SUPPLY_CONTRACT, "Supply", clock.now, clock.now + timedelta(days=1)
        )

        page = await auction_engine.list_auctions(auction_type=AuctionType.CAPITAL, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert [a.title for a in page.auctions] == ["Capital 2", "Capital 1"]

        second = await auction_engine.list_auctions(auction_type=AuctionType.CAPITAL, page=2, limit=2)
        assert [a.title for a in second.auctions] == ["Capital 0"]

        by_project = await auction_engine.list_auctions(project_id="project-1")
        assert by_project.total == 3

        pending = await auction_engine.list_auctions(status=AuctionStatus.PENDING)
        assert pending.total == 4

    @pytest.mark.asyncio
    async def test_invalid_paging(self, auction_engine):
        with pytest.raises(ValidationError):
            await auction_engine.list_auctions(page=0)
