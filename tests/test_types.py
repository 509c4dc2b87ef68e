"""Unit tests for auction and guarantee types."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from trustalloc.core.exceptions import ValidationError
from trustalloc.core.types import (
    AllocatedLayer,
    Auction,
    AuctionPage,
    AuctionStatus,
    AuctionType,
    ClearingMethod,
    GuaranteeLayer,
    GuaranteeRequest,
    GuaranteeRequestStatus,
    parse_amount,
    to_decimal,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_auction(**overrides) -> Auction:
    fields = dict(
        id="auction-1",
        auction_type=AuctionType.CAPITAL,
        title="Working capital",
        status=AuctionStatus.ACTIVE,
        start_time=NOW,
        end_time=NOW + timedelta(days=7),
        created_at=NOW,
    )
    fields.update(overrides)
    return Auction(**fields)


class TestToDecimal:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("900000", Decimal("900000")),
            (1.2, Decimal("1.2")),
            (7, Decimal("7")),
            (Decimal("0.5"), Decimal("0.5")),
        ],
    )
    def test_conversion(self, value, expected):
        assert to_decimal(value) == expected

    def test_float_has_no_artifacts(self):
        assert str(to_decimal(0.1)) == "0.1"


class TestParseAmount:
    def test_accepts_numbers(self):
        assert parse_amount("950000", "price") == Decimal("950000")
        assert parse_amount(1.5, "fee_percent") == Decimal("1.5")

    @pytest.mark.parametrize(
        "value", ["abc", "", "NaN", "sNaN", "Infinity", float("nan"), float("inf"), float("-inf")]
    )
    def test_rejects_malformed_and_non_finite(self, value):
        with pytest.raises(ValidationError, match="price"):
            parse_amount(value, "price")


class TestEnums:
    def test_terminal_statuses(self):
        assert AuctionStatus.CLOSED.is_terminal
        assert AuctionStatus.CANCELLED.is_terminal
        assert not AuctionStatus.ACTIVE.is_terminal
        assert not AuctionStatus.PENDING.is_terminal

    def test_layer_priority_order(self):
        ordered = sorted(GuaranteeLayer, key=lambda layer: layer.priority)
        assert ordered == [
            GuaranteeLayer.FIRST_LOSS,
            GuaranteeLayer.MEZZANINE,
            GuaranteeLayer.SENIOR,
        ]


class TestAuction:
    def test_window_uses_extension(self):
        auction = make_auction(extended_end_time=NOW + timedelta(days=10))

        assert auction.effective_end_time == NOW + timedelta(days=10)
        assert auction.is_open_at(NOW + timedelta(days=9))
        assert not auction.is_open_at(NOW + timedelta(days=11))
        assert not auction.is_open_at(NOW - timedelta(seconds=1))

    def test_not_open_unless_active(self):
        auction = make_auction(status=AuctionStatus.PENDING)
        assert not auction.is_open_at(NOW + timedelta(hours=1))

    def test_round_trip(self):
        auction = make_auction(
            reserve_price=Decimal("1000000"),
            trust_weight=Decimal("1.2"),
            clearing_method=ClearingMethod.SECOND_PRICE,
            min_trust_score=60.0,
            metadata={"region": "nairobi"},
        )
        data = auction.to_dict()

        assert data["reserve_price"] == "1000000"
        assert data["trust_weight"] == "1.2"
        assert data["clearing_method"] == "SECOND_PRICE"
        assert Auction.from_dict(data) == auction


class TestGuaranteeRequest:
    def test_unfunded_coverage(self):
        request = GuaranteeRequest(
            id="req-1",
            issuer_id="issuer-1",
            guarantee_type="LOAN",
            requested_coverage=Decimal("90"),
            amount=Decimal("1000000"),
            created_at=NOW,
        )
        assert request.unfunded_coverage == Decimal("90")

        request.allocated_coverage = Decimal("30")
        assert request.unfunded_coverage == Decimal("60")

    def test_round_trip_with_layers(self):
        request = GuaranteeRequest(
            id="req-1",
            issuer_id="issuer-1",
            guarantee_type="LOAN",
            requested_coverage=Decimal("70"),
            amount=Decimal("1000000"),
            created_at=NOW,
            status=GuaranteeRequestStatus.ALLOCATED,
            allocated_coverage=Decimal("70"),
            allocated_layers=[
                AllocatedLayer(GuaranteeLayer.FIRST_LOSS, Decimal("30"), "g1"),
                AllocatedLayer(GuaranteeLayer.MEZZANINE, Decimal("40"), "g2"),
            ],
            allocated_at=NOW,
        )

        assert GuaranteeRequest.from_dict(request.to_dict()) == request


class TestAuctionPage:
    @pytest.mark.parametrize("total,limit,pages", [(0, 10, 0), (10, 10, 1), (11, 10, 2)])
    def test_pages(self, total, limit, pages):
        assert AuctionPage(auctions=[], page=1, limit=limit, total=total).pages == pages
