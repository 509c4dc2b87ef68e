"""
Type definitions for the auction and guarantee engines.

This module contains the enums and records for auctions, bids, guarantee
requests, guarantee bids and allocations. Records serialize to plain dicts
only at the storage boundary via to_dict()/from_dict().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeAlias

from trustalloc.core.exceptions import ValidationError

# Type alias for flexible amount input
AmountType: TypeAlias = Decimal | int | float | str


def to_decimal(value: AmountType) -> Decimal:
    """Convert user input to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def parse_amount(value: AmountType, name: str) -> Decimal:
    """
    Convert caller input to a finite Decimal.

    Raises:
        ValidationError: If the value is not a number, or is NaN or infinite
    """
    try:
        amount = to_decimal(value)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"{name} must be a number", details={name: repr(value)}) from e
    if not amount.is_finite():
        raise ValidationError(f"{name} must be finite", details={name: str(amount)})
    return amount


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dec(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


def _str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AuctionType(str, Enum):
    """What an auction allocates."""

    CAPITAL = "CAPITAL"
    GUARANTEE = "GUARANTEE"
    SUPPLY_CONTRACT = "SUPPLY_CONTRACT"


class AuctionStatus(str, Enum):
    """Auction lifecycle state."""

    PENDING = "PENDING"  # Created, not yet accepting bids
    ACTIVE = "ACTIVE"  # Accepting bids
    CLOSED = "CLOSED"  # Cleared, bids settled
    CANCELLED = "CANCELLED"  # Aborted before clearing

    @property
    def is_terminal(self) -> bool:
        return self in (AuctionStatus.CLOSED, AuctionStatus.CANCELLED)


class ClearingMethod(str, Enum):
    """How the clearing price is picked from the ranked bids."""

    FIRST_PRICE = "FIRST_PRICE"
    SECOND_PRICE = "SECOND_PRICE"


class BidStatus(str, Enum):
    """Status of an auction bid or a guarantee bid."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class GuaranteeRequestStatus(str, Enum):
    """Guarantee request lifecycle state."""

    PENDING = "PENDING"
    AUCTION_ACTIVE = "AUCTION_ACTIVE"
    ALLOCATED = "ALLOCATED"
    EXPIRED = "EXPIRED"


class GuaranteeLayer(str, Enum):
    """Risk tranche, in allocation priority order."""

    FIRST_LOSS = "FIRST_LOSS"
    MEZZANINE = "MEZZANINE"
    SENIOR = "SENIOR"

    @property
    def priority(self) -> int:
        return LAYER_PRIORITY[self]


# Unspecified layers sort after every named tranche
LAYER_PRIORITY: dict[GuaranteeLayer, int] = {
    GuaranteeLayer.FIRST_LOSS: 1,
    GuaranteeLayer.MEZZANINE: 2,
    GuaranteeLayer.SENIOR: 3,
}
UNSPECIFIED_LAYER_PRIORITY = 99


class AllocationStatus(str, Enum):
    """Guarantee allocation state."""

    ACTIVE = "ACTIVE"
    DRAWN = "DRAWN"  # Guarantee was called
    RELEASED = "RELEASED"  # Underlying obligation settled
    EXPIRED = "EXPIRED"


# ---------------------------------------------------------------------------
# Auctions
# ---------------------------------------------------------------------------

@dataclass
class Auction:
    """A reverse auction: the lowest qualifying effective bid wins."""

    id: str
    auction_type: AuctionType
    title: str
    status: AuctionStatus
    start_time: datetime
    end_time: datetime
    created_at: datetime
    trust_weight: Decimal = Decimal("1.0")
    clearing_method: ClearingMethod = ClearingMethod.FIRST_PRICE
    currency: str = "KES"
    description: str | None = None
    extended_end_time: datetime | None = None
    reserve_price: Decimal | None = None
    target_amount: Decimal | None = None
    min_trust_score: float | None = None
    cleared_price: Decimal | None = None
    cleared_at: datetime | None = None
    project_id: str | None = None
    guarantee_request_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def effective_end_time(self) -> datetime:
        """End of the bidding window, including any extension."""
        return self.extended_end_time or self.end_time

    def is_open_at(self, now: datetime) -> bool:
        """Whether bids are accepted at `now`."""
        return (
            self.status == AuctionStatus.ACTIVE
            and self.start_time <= now <= self.effective_end_time
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "auction_type": self.auction_type.value,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "extended_end_time": _iso(self.extended_end_time),
            "created_at": self.created_at.isoformat(),
            "trust_weight": str(self.trust_weight),
            "clearing_method": self.clearing_method.value,
            "currency": self.currency,
            "reserve_price": _str(self.reserve_price),
            "target_amount": _str(self.target_amount),
            "min_trust_score": self.min_trust_score,
            "cleared_price": _str(self.cleared_price),
            "cleared_at": _iso(self.cleared_at),
            "project_id": self.project_id,
            "guarantee_request_id": self.guarantee_request_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Auction:
        return cls(
            id=data["id"],
            auction_type=AuctionType(data["auction_type"]),
            title=data["title"],
            description=data.get("description"),
            status=AuctionStatus(data["status"]),
            start_time=datetime.fromisoformat(data["start_time"]),
            end_time=datetime.fromisoformat(data["end_time"]),
            extended_end_time=_dt(data.get("extended_end_time")),
            created_at=datetime.fromisoformat(data["created_at"]),
            trust_weight=Decimal(data.get("trust_weight", "1.0")),
            clearing_method=ClearingMethod(
                data.get("clearing_method", ClearingMethod.FIRST_PRICE.value)
            ),
            currency=data.get("currency", "KES"),
            reserve_price=_dec(data.get("reserve_price")),
            target_amount=_dec(data.get("target_amount")),
            min_trust_score=data.get("min_trust_score"),
            cleared_price=_dec(data.get("cleared_price")),
            cleared_at=_dt(data.get("cleared_at")),
            project_id=data.get("project_id"),
            guarantee_request_id=data.get("guarantee_request_id"),
            metadata=data.get("metadata", {}),
        )


@dataclass
class Bid:
    """A bid on an auction, with the bidder's trust snapshot."""

    id: str
    auction_id: str
    bidder_id: str
    price: Decimal
    bidder_trust_score: float
    effective_bid: Decimal
    sequence: int
    submitted_at: datetime
    status: BidStatus = BidStatus.PENDING
    amount: Decimal | None = None
    accepted_at: datetime | None = None
    withdrawn_at: datetime | None = None
    notes: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "auction_id": self.auction_id,
            "bidder_id": self.bidder_id,
            "price": str(self.price),
            "amount": _str(self.amount),
            "bidder_trust_score": self.bidder_trust_score,
            "effective_bid": str(self.effective_bid),
            "sequence": self.sequence,
            "status": self.status.value,
            "submitted_at": self.submitted_at.isoformat(),
            "accepted_at": _iso(self.accepted_at),
            "withdrawn_at": _iso(self.withdrawn_at),
            "notes": self.notes,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Bid:
        return cls(
            id=data["id"],
            auction_id=data["auction_id"],
            bidder_id=data["bidder_id"],
            price=Decimal(data["price"]),
            amount=_dec(data.get("amount")),
            bidder_trust_score=float(data.get("bidder_trust_score", 0.0)),
            effective_bid=Decimal(data["effective_bid"]),
            sequence=int(data.get("sequence", 0)),
            status=BidStatus(data.get("status", BidStatus.PENDING.value)),
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
            accepted_at=_dt(data.get("accepted_at")),
            withdrawn_at=_dt(data.get("withdrawn_at")),
            notes=data.get("notes"),
            metadata=data.get("metadata", {}),
        )


@dataclass
class AuctionCloseResult:
    """Outcome of closing an auction."""

    auction: Auction
    cleared_price: Decimal | None
    accepted_bid_ids: list[str] = field(default_factory=list)
    rejected_bid_ids: list[str] = field(default_factory=list)


@dataclass
class AuctionPage:
    """One page of an auction listing."""

    auctions: list[Auction]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


# ---------------------------------------------------------------------------
# Guarantees
# ---------------------------------------------------------------------------

@dataclass
class AllocatedLayer:
    """Summary of one allocation, kept on the guarantee request."""

    layer: GuaranteeLayer
    coverage: Decimal
    guarantor_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer.value,
            "coverage": str(self.coverage),
            "guarantor_id": self.guarantor_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AllocatedLayer:
        return cls(
            layer=GuaranteeLayer(data["layer"]),
            coverage=Decimal(data["coverage"]),
            guarantor_id=data["guarantor_id"],
        )


@dataclass
class GuaranteeRequest:
    """An issuer's request for guarantee coverage (percent of amount)."""

    id: str
    issuer_id: str
    guarantee_type: str
    requested_coverage: Decimal
    amount: Decimal
    created_at: datetime
    status: GuaranteeRequestStatus = GuaranteeRequestStatus.PENDING
    currency: str = "KES"
    auction_id: str | None = None
    allocated_coverage: Decimal | None = None
    allocated_layers: list[AllocatedLayer] = field(default_factory=list)
    allocated_at: datetime | None = None
    expires_at: datetime | None = None
    project_id: str | None = None
    investment_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def unfunded_coverage(self) -> Decimal:
        """Coverage left without a guarantor after allocation."""
        return self.requested_coverage - (self.allocated_coverage or Decimal("0"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "issuer_id": self.issuer_id,
            "guarantee_type": self.guarantee_type,
            "requested_coverage": str(self.requested_coverage),
            "amount": str(self.amount),
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "currency": self.currency,
            "auction_id": self.auction_id,
            "allocated_coverage": _str(self.allocated_coverage),
            "allocated_layers": [layer.to_dict() for layer in self.allocated_layers],
            "allocated_at": _iso(self.allocated_at),
            "expires_at": _iso(self.expires_at),
            "project_id": self.project_id,
            "investment_id": self.investment_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuaranteeRequest:
        return cls(
            id=data["id"],
            issuer_id=data["issuer_id"],
            guarantee_type=data["guarantee_type"],
            requested_coverage=Decimal(data["requested_coverage"]),
            amount=Decimal(data["amount"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=GuaranteeRequestStatus(data.get("status", "PENDING")),
            currency=data.get("currency", "KES"),
            auction_id=data.get("auction_id"),
            allocated_coverage=_dec(data.get("allocated_coverage")),
            allocated_layers=[
                AllocatedLayer.from_dict(item) for item in data.get("allocated_layers", [])
            ],
            allocated_at=_dt(data.get("allocated_at")),
            expires_at=_dt(data.get("expires_at")),
            project_id=data.get("project_id"),
            investment_id=data.get("investment_id"),
            metadata=data.get("metadata", {}),
        )


@dataclass
class GuaranteeBid:
    """A guarantor's offer to cover part of a guarantee request."""

    id: str
    guarantee_request_id: str
    guarantor_id: str
    coverage_percent: Decimal
    fee_percent: Decimal
    guarantor_trust_score: float
    effective_bid: Decimal
    sequence: int
    submitted_at: datetime
    status: BidStatus = BidStatus.PENDING
    layer: GuaranteeLayer | None = None
    max_capacity: Decimal | None = None
    available_capacity: Decimal | None = None
    accepted_at: datetime | None = None
    withdrawn_at: datetime | None = None
    notes: str | None = None

    @property
    def layer_priority(self) -> int:
        return self.layer.priority if self.layer else UNSPECIFIED_LAYER_PRIORITY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "guarantee_request_id": self.guarantee_request_id,
            "guarantor_id": self.guarantor_id,
            "coverage_percent": str(self.coverage_percent),
            "fee_percent": str(self.fee_percent),
            "guarantor_trust_score": self.guarantor_trust_score,
            "effective_bid": str(self.effective_bid),
            "sequence": self.sequence,
            "submitted_at": self.submitted_at.isoformat(),
            "status": self.status.value,
            "layer": self.layer.value if self.layer else None,
            "max_capacity": _str(self.max_capacity),
            "available_capacity": _str(self.available_capacity),
            "accepted_at": _iso(self.accepted_at),
            "withdrawn_at": _iso(self.withdrawn_at),
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuaranteeBid:
        return cls(
            id=data["id"],
            guarantee_request_id=data["guarantee_request_id"],
            guarantor_id=data["guarantor_id"],
            coverage_percent=Decimal(data["coverage_percent"]),
            fee_percent=Decimal(data["fee_percent"]),
            guarantor_trust_score=float(data.get("guarantor_trust_score", 0.0)),
            effective_bid=Decimal(data["effective_bid"]),
            sequence=int(data.get("sequence", 0)),
            submitted_at=datetime.fromisoformat(data["submitted_at"]),
            status=BidStatus(data.get("status", BidStatus.PENDING.value)),
            layer=GuaranteeLayer(data["layer"]) if data.get("layer") else None,
            max_capacity=_dec(data.get("max_capacity")),
            available_capacity=_dec(data.get("available_capacity")),
            accepted_at=_dt(data.get("accepted_at")),
            withdrawn_at=_dt(data.get("withdrawn_at")),
            notes=data.get("notes"),
        )


@dataclass
class GuaranteeAllocation:
    """Coverage assigned to one guarantor. Only `status` changes after creation."""

    id: str
    guarantee_request_id: str
    guarantor_id: str
    coverage_percent: Decimal
    fee_percent: Decimal
    amount: Decimal
    layer: GuaranteeLayer
    created_at: datetime
    status: AllocationStatus = AllocationStatus.ACTIVE
    expires_at: datetime | None = None
    status_changed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "guarantee_request_id": self.guarantee_request_id,
            "guarantor_id": self.guarantor_id,
            "coverage_percent": str(self.coverage_percent),
            "fee_percent": str(self.fee_percent),
            "amount": str(self.amount),
            "layer": self.layer.value,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "expires_at": _iso(self.expires_at),
            "status_changed_at": _iso(self.status_changed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GuaranteeAllocation:
        return cls(
            id=data["id"],
            guarantee_request_id=data["guarantee_request_id"],
            guarantor_id=data["guarantor_id"],
            coverage_percent=Decimal(data["coverage_percent"]),
            fee_percent=Decimal(data["fee_percent"]),
            amount=Decimal(data["amount"]),
            layer=GuaranteeLayer(data["layer"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            status=AllocationStatus(data.get("status", AllocationStatus.ACTIVE.value)),
            expires_at=_dt(data.get("expires_at")),
            status_changed_at=_dt(data.get("status_changed_at")),
        )


@dataclass
class AllocationResult:
    """Outcome of allocating a guarantee request across tranches."""

    request: GuaranteeRequest
    allocations: list[GuaranteeAllocation]
    rejected_bid_ids: list[str] = field(default_factory=list)

    @property
    def total_coverage(self) -> Decimal:
        return sum((a.coverage_percent for a in self.allocations), Decimal("0"))


@dataclass
class GuaranteeRequestPage:
    """One page of a guarantee request listing."""

    requests: list[GuaranteeRequest]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0
