"""
TrustAlloc - Trust-Weighted Allocation Engine

Trust scores weight reverse-auction bids; closed guarantee auctions feed a
tranche allocator that uses the same weighting.

Usage:
    >>> from trustalloc import TrustAlloc, AuctionType
    >>>
    >>> async with TrustAlloc() as engine:
    ...     auction = await engine.create_auction(AuctionType.CAPITAL, "Series A", start, end)
    ...     await engine.start_auction(auction.id)
    ...     bid = await engine.place_bid(auction.id, "supplier-1", "900000")
"""

from trustalloc.client import TrustAlloc
from trustalloc.core.config import Config
from trustalloc.core.exceptions import (
    ConcurrencyError,
    ConfigurationError,
    InsufficientCapacityError,
    InsufficientGuaranteeTrustError,
    InsufficientTrustError,
    InvalidStateError,
    MetricsUnavailableError,
    NotFoundError,
    ReservePriceViolation,
    TrustAllocError,
    UnauthorizedError,
    ValidationError,
)
from trustalloc.core.types import (
    AllocatedLayer,
    AllocationResult,
    AllocationStatus,
    Auction,
    AuctionCloseResult,
    AuctionPage,
    AuctionStatus,
    AuctionType,
    Bid,
    BidStatus,
    ClearingMethod,
    GuaranteeAllocation,
    GuaranteeBid,
    GuaranteeLayer,
    GuaranteeRequest,
    GuaranteeRequestPage,
    GuaranteeRequestStatus,
)
from trustalloc.ledger import TriggerType, TrustEvent, TrustEventType
from trustalloc.trust import DecayBatchResult, TrustExplanation, TrustScore

__version__ = "0.1.0"

__all__ = [
    # Client
    "TrustAlloc",
    "Config",
    # Trust
    "DecayBatchResult",
    "TriggerType",
    "TrustEvent",
    "TrustEventType",
    "TrustExplanation",
    "TrustScore",
    # Auctions
    "Auction",
    "AuctionCloseResult",
    "AuctionPage",
    "AuctionStatus",
    "AuctionType",
    "Bid",
    "BidStatus",
    "ClearingMethod",
    # Guarantees
    "AllocatedLayer",
    "AllocationResult",
    "AllocationStatus",
    "GuaranteeAllocation",
    "GuaranteeBid",
    "GuaranteeLayer",
    "GuaranteeRequest",
    "GuaranteeRequestPage",
    "GuaranteeRequestStatus",
    # Exceptions
    "ConcurrencyError",
    "ConfigurationError",
    "InsufficientCapacityError",
    "InsufficientGuaranteeTrustError",
    "InsufficientTrustError",
    "InvalidStateError",
    "MetricsUnavailableError",
    "NotFoundError",
    "ReservePriceViolation",
    "TrustAllocError",
    "UnauthorizedError",
    "ValidationError",
]
