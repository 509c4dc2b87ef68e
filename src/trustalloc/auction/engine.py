"""
Auction Engine: reverse-auction lifecycle and trust-weighted bidding.

State machine:
    PENDING --start--> ACTIVE --close--> CLOSED
    PENDING | ACTIVE --cancel--> CANCELLED
    ACTIVE --extend--> ACTIVE (end time pushed out only)

Every transition runs under the `auction:{id}` lock, so two concurrent
closes cannot both succeed and bids never race a close.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from trustalloc.auction.clearing import clear_bids, effective_bid
from trustalloc.core.clock import Clock, utcnow
from trustalloc.core.config import Config
from trustalloc.core.exceptions import (
    InsufficientTrustError,
    InvalidStateError,
    NotFoundError,
    ReservePriceViolation,
    UnauthorizedError,
    ValidationError,
)
from trustalloc.core.logging import get_logger
from trustalloc.core.types import (
    AmountType,
    Auction,
    AuctionCloseResult,
    AuctionPage,
    AuctionStatus,
    AuctionType,
    Bid,
    BidStatus,
    ClearingMethod,
    parse_amount,
)
from trustalloc.ledger.ledger import TriggerType
from trustalloc.ledger.lock import LockService
from trustalloc.storage.base import StorageBackend
from trustalloc.trust.engine import TrustScoreEngine

logger = get_logger("auction.engine")

LOCK_SCOPE = "auction"

# Weight of a bid as a trust activity signal
AUCTION_ACTIVITY_VALUE = 1.5


def require_aware(value: datetime, name: str) -> datetime:
    if value.tzinfo is None:
        raise ValidationError(f"{name} must be timezone-aware")
    return value


class AuctionEngine:
    """
    Manages auctions and their bids.

    Usage:
        auctions = AuctionEngine(storage, trust_engine)
        auction = await auctions.create_auction(AuctionType.CAPITAL, "Series A", start, end)
        await auctions.start_auction(auction.id)
        bid = await auctions.place_bid(auction.id, "supplier-1", "900000")
        result = await auctions.close_auction(auction.id)
    """

    AUCTIONS = "auctions"
    BIDS = "bids"
    SEQUENCES = "bid_sequences"

    def __init__(
        self,
        storage: StorageBackend,
        trust: TrustScoreEngine,
        locks: LockService | None = None,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._storage = storage
        self._trust = trust
        self._config = config or Config()
        self._clock = clock
        self._locks = locks or LockService(
            storage,
            ttl=self._config.lock_ttl_seconds,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
        )

    # ─── Persistence ─────────────────────────────────────────────────

    async def _save_auction(self, auction: Auction) -> None:
        await self._storage.save(self.AUCTIONS, auction.id, auction.to_dict())

    async def get_auction(self, auction_id: str) -> Auction:
        data = await self._storage.get(self.AUCTIONS, auction_id)
        if not data:
            raise NotFoundError(
                f"Auction {auction_id} not found", resource="auction", resource_id=auction_id
            )
        return Auction.from_dict(data)

    async def get_bid(self, bid_id: str) -> Bid:
        data = await self._storage.get(self.BIDS, bid_id)
        if not data:
            raise NotFoundError(f"Bid {bid_id} not found", resource="bid", resource_id=bid_id)
        return Bid.from_dict(data)

    async def list_bids(
        self,
        auction_id: str,
        status: BidStatus | None = None,
    ) -> list[Bid]:
        """Bids on an auction in submission order."""
        filters: dict[str, Any] = {"auction_id": auction_id}
        if status:
            filters["status"] = status.value
        records = await self._storage.query(self.BIDS, filters=filters)
        return sorted((Bid.from_dict(r) for r in records), key=lambda b: b.sequence)

    async def list_auctions(
        self,
        auction_type: AuctionType | None = None,
        status: AuctionStatus | None = None,
        project_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> AuctionPage:
        """Auctions newest first, one page at a time."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        filters: dict[str, Any] = {}
        if auction_type:
            filters["auction_type"] = auction_type.value
        if status:
            filters["status"] = status.value
        if project_id:
            filters["project_id"] = project_id

        records = await self._storage.query(self.AUCTIONS, filters=filters or None)
        auctions = sorted(
            (Auction.from_dict(r) for r in records),
            key=lambda a: a.created_at,
            reverse=True,
        )
        start = (page - 1) * limit
        return AuctionPage(
            auctions=auctions[start:start + limit],
            page=page,
            limit=limit,
            total=len(auctions),
        )

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def create_auction(
        self,
        auction_type: AuctionType,
        title: str,
        start_time: datetime,
        end_time: datetime,
        reserve_price: AmountType | None = None,
        target_amount: AmountType | None = None,
        min_trust_score: float | None = None,
        trust_weight: AmountType = Decimal("1.0"),
        clearing_method: ClearingMethod = ClearingMethod.FIRST_PRICE,
        currency: str = "KES",
        description: str | None = None,
        project_id: str | None = None,
        guarantee_request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Auction:
        """
        Create an auction in PENDING status.

        Raises:
            ValidationError: If the window or any amount is invalid
        """
        now = self._clock()
        if require_aware(start_time, "start_time") < now:
            raise ValidationError("Start time cannot be in the past")

        return await self._create(
            auction_type,
            title,
            start_time,
            end_time,
            created_at=now,
            reserve_price=reserve_price,
            target_amount=target_amount,
            min_trust_score=min_trust_score,
            trust_weight=trust_weight,
            clearing_method=clearing_method,
            currency=currency,
            description=description,
            project_id=project_id,
            guarantee_request_id=guarantee_request_id,
            metadata=metadata,
        )

    async def open_auction(
        self,
        auction_type: AuctionType,
        title: str,
        duration: timedelta,
        **options: Any,
    ) -> Auction:
        """Create an auction starting now and start it immediately."""
        now = self._clock()
        auction = await self._create(
            auction_type, title, now, now + duration, created_at=now, **options
        )
        return await self.start_auction(auction.id)

    async def _create(
        self,
        auction_type: AuctionType,
        title: str,
        start_time: datetime,
        end_time: datetime,
        created_at: datetime,
        reserve_price: AmountType | None = None,
        target_amount: AmountType | None = None,
        min_trust_score: float | None = None,
        trust_weight: AmountType = Decimal("1.0"),
        clearing_method: ClearingMethod = ClearingMethod.FIRST_PRICE,
        currency: str = "KES",
        description: str | None = None,
        project_id: str | None = None,
        guarantee_request_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Auction:
        if not title:
            raise ValidationError("title is required")
        require_aware(end_time, "end_time")
        if end_time <= start_time:
            raise ValidationError("End time must be after start time")

        weight = parse_amount(trust_weight, "trust_weight")
        if weight < 0:
            raise ValidationError("trust_weight must not be negative")
        reserve = (
            parse_amount(reserve_price, "reserve_price") if reserve_price is not None else None
        )
        if reserve is not None and reserve < 0:
            raise ValidationError("reserve_price must not be negative")
        target = parse_amount(target_amount, "target_amount") if target_amount is not None else None
        if target is not None and target < 0:
            raise ValidationError("target_amount must not be negative")
        if min_trust_score is not None and not 0 <= min_trust_score <= 100:
            raise ValidationError("min_trust_score must be between 0 and 100")

        auction = Auction(
            id=str(uuid.uuid4()),
            auction_type=AuctionType(auction_type),
            title=title,
            description=description,
            status=AuctionStatus.PENDING,
            start_time=start_time,
            end_time=end_time,
            created_at=created_at,
            trust_weight=weight,
            clearing_method=ClearingMethod(clearing_method),
            currency=currency,
            reserve_price=reserve,
            target_amount=target,
            min_trust_score=min_trust_score,
            project_id=project_id,
            guarantee_request_id=guarantee_request_id,
            metadata=metadata or {},
        )
        await self._save_auction(auction)
        logger.info(f"Created {auction.auction_type.value} auction {auction.id}: {title}")
        return auction

    async def start_auction(self, auction_id: str) -> Auction:
        """PENDING -> ACTIVE, once the start time has been reached."""
        async with self._locks.hold(LOCK_SCOPE, auction_id):
            auction = await self.get_auction(auction_id)
            if auction.status != AuctionStatus.PENDING:
                raise InvalidStateError(
                    "Auction can only be started from PENDING status",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )
            if self._clock() < auction.start_time:
                raise InvalidStateError(
                    "Auction start time has not been reached",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )

            auction.status = AuctionStatus.ACTIVE
            await self._save_auction(auction)

        logger.info(f"Auction {auction_id} is now ACTIVE")
        return auction

    async def extend_auction(self, auction_id: str, new_end_time: datetime) -> Auction:
        """Push out the end of an ACTIVE auction."""
        require_aware(new_end_time, "new_end_time")
        async with self._locks.hold(LOCK_SCOPE, auction_id):
            auction = await self.get_auction(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise InvalidStateError(
                    "Only ACTIVE auctions can be extended",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )
            if new_end_time <= auction.effective_end_time:
                raise ValidationError(
                    "New end time must be after the current end time",
                    details={"current_end_time": auction.effective_end_time.isoformat()},
                )

            auction.extended_end_time = new_end_time
            await self._save_auction(auction)

        logger.info(f"Auction {auction_id} extended to {new_end_time.isoformat()}")
        return auction

    async def cancel_auction(self, auction_id: str, reason: str | None = None) -> Auction:
        """Cancel a PENDING or ACTIVE auction, rejecting its pending bids."""
        async with self._locks.hold(LOCK_SCOPE, auction_id):
            auction = await self.get_auction(auction_id)
            if auction.status.is_terminal:
                raise InvalidStateError(
                    f"Auction is already {auction.status.value}",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )

            pending = await self.list_bids(auction_id, status=BidStatus.PENDING)
            for bid in pending:
                bid.status = BidStatus.REJECTED
            if pending:
                await self._storage.save_many(self.BIDS, {b.id: b.to_dict() for b in pending})

            auction.status = AuctionStatus.CANCELLED
            if reason:
                auction.metadata["cancel_reason"] = reason
            await self._save_auction(auction)

        logger.info(f"Auction {auction_id} cancelled, {len(pending)} pending bids rejected")
        return auction

    async def close_auction(self, auction_id: str) -> AuctionCloseResult:
        """
        Clear an ACTIVE auction whose bidding window has ended.

        Every PENDING bid ends ACCEPTED or REJECTED. An auction without bids
        still closes, with no cleared price.
        """
        async with self._locks.hold(LOCK_SCOPE, auction_id):
            auction = await self.get_auction(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise InvalidStateError(
                    "Only ACTIVE auctions can be closed",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )
            now = self._clock()
            if now < auction.effective_end_time:
                raise InvalidStateError(
                    "Auction has not ended yet",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                    details={"ends_at": auction.effective_end_time.isoformat()},
                )

            pending = await self.list_bids(auction_id, status=BidStatus.PENDING)
            outcome = clear_bids(pending, auction.clearing_method)
            for bid in outcome.accepted:
                bid.status = BidStatus.ACCEPTED
                bid.accepted_at = now
            for bid in outcome.rejected:
                bid.status = BidStatus.REJECTED
            if pending:
                await self._storage.save_many(self.BIDS, {b.id: b.to_dict() for b in pending})

            auction.status = AuctionStatus.CLOSED
            auction.cleared_price = outcome.cleared_price
            auction.cleared_at = now
            await self._save_auction(auction)

        logger.info(
            f"Auction {auction_id} closed at {outcome.cleared_price}: "
            f"{len(outcome.accepted)} accepted, {len(outcome.rejected)} rejected"
        )
        return AuctionCloseResult(
            auction=auction,
            cleared_price=outcome.cleared_price,
            accepted_bid_ids=[b.id for b in outcome.accepted],
            rejected_bid_ids=[b.id for b in outcome.rejected],
        )

    # ─── Bids ────────────────────────────────────────────────────────

    async def next_sequence(self, auction_id: str) -> int:
        raw = await self._storage.atomic_add(self.SEQUENCES, auction_id, "1")
        return int(Decimal(raw))

    async def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        price: AmountType,
        amount: AmountType | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Bid:
        """
        Place a bid on an ACTIVE auction.

        Raises:
            NotFoundError: If the auction does not exist
            InvalidStateError: If the auction is not open for bids
            InsufficientTrustError: If the bidder is below the minimum trust score
            ReservePriceViolation: If the price is below the reserve price
        """
        bid_price = parse_amount(price, "price")
        if bid_price <= 0:
            raise ValidationError("price must be positive")
        bid_amount = parse_amount(amount, "amount") if amount is not None else None
        if bid_amount is not None and bid_amount <= 0:
            raise ValidationError("amount must be positive")

        async with self._locks.hold(LOCK_SCOPE, auction_id):
            auction = await self.get_auction(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise InvalidStateError(
                    "Auction is not accepting bids",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )
            now = self._clock()
            if not auction.is_open_at(now):
                raise InvalidStateError(
                    "Bid is outside the auction's bidding window",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )

            trust_score = (await self._trust.get_trust_score(bidder_id)).trust_score
            if auction.min_trust_score is not None and trust_score < auction.min_trust_score:
                raise InsufficientTrustError(
                    "Insufficient trust score to bid on this auction",
                    entity_id=bidder_id,
                    score=trust_score,
                    required=auction.min_trust_score,
                )
            if auction.reserve_price is not None and bid_price < auction.reserve_price:
                raise ReservePriceViolation(
                    "Bid price is below the reserve price",
                    price=bid_price,
                    reserve_price=auction.reserve_price,
                )

            bid = Bid(
                id=str(uuid.uuid4()),
                auction_id=auction_id,
                bidder_id=bidder_id,
                price=bid_price,
                amount=bid_amount,
                bidder_trust_score=trust_score,
                effective_bid=effective_bid(bid_price, auction.trust_weight, trust_score),
                sequence=await self.next_sequence(auction_id),
                submitted_at=now,
                notes=notes,
                metadata=metadata or {},
            )
            await self._storage.save(self.BIDS, bid.id, bid.to_dict())

        logger.info(
            f"Bid {bid.id} on auction {auction_id} by {bidder_id}: "
            f"price={bid.price} effective={bid.effective_bid}"
        )
        await self._signal_activity(bidder_id)
        return bid

    async def _signal_activity(self, bidder_id: str) -> None:
        try:
            await self._trust.track_activity(
                bidder_id, TriggerType.AUCTION, AUCTION_ACTIVITY_VALUE
            )
        except Exception as e:
            logger.warning(f"Trust activity tracking failed for {bidder_id}: {e}")

    async def withdraw_bid(self, bid_id: str, bidder_id: str) -> Bid:
        """
        Withdraw a PENDING bid while its auction is ACTIVE.

        Raises:
            UnauthorizedError: If `bidder_id` did not place the bid
        """
        auction_id = (await self.get_bid(bid_id)).auction_id
        async with self._locks.hold(LOCK_SCOPE, auction_id):
            bid = await self.get_bid(bid_id)
            if bid.bidder_id != bidder_id:
                raise UnauthorizedError("Only the bidder can withdraw this bid", actor_id=bidder_id)
            if bid.status != BidStatus.PENDING:
                raise InvalidStateError(
                    "Only PENDING bids can be withdrawn",
                    resource="bid",
                    resource_id=bid_id,
                    current_status=bid.status.value,
                )
            auction = await self.get_auction(auction_id)
            if auction.status != AuctionStatus.ACTIVE:
                raise InvalidStateError(
                    "Bids can only be withdrawn while the auction is ACTIVE",
                    resource="auction",
                    resource_id=auction_id,
                    current_status=auction.status.value,
                )

            bid.status = BidStatus.WITHDRAWN
            bid.withdrawn_at = self._clock()
            await self._storage.save(self.BIDS, bid.id, bid.to_dict())

        logger.info(f"Bid {bid_id} withdrawn by {bidder_id}")
        return bid


__all__ = ["AuctionEngine", "AUCTION_ACTIVITY_VALUE"]
