"""
Guarantee Allocation Engine: guarantee requests, guarantor bids and tranches.

Flow:
1. An issuer creates a guarantee request (PENDING)
2. A GUARANTEE auction is opened for it (request -> AUCTION_ACTIVE)
3. Guarantors bid coverage and fees, gated by guarantee-specific trust
4. Once the auction is closed, coverage is allocated across tranches
   (request -> ALLOCATED)

Requests past their expiry are swept to EXPIRED. Allocations move from
ACTIVE to DRAWN, RELEASED or EXPIRED exactly once.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from trustalloc.auction.clearing import effective_bid
from trustalloc.auction.engine import AuctionEngine, require_aware
from trustalloc.core.clock import Clock, utcnow
from trustalloc.core.config import Config
from trustalloc.core.exceptions import (
    ConcurrencyError,
    InsufficientCapacityError,
    InsufficientGuaranteeTrustError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from trustalloc.core.logging import get_logger
from trustalloc.core.types import (
    AllocatedLayer,
    AllocationResult,
    AllocationStatus,
    AmountType,
    Auction,
    AuctionStatus,
    AuctionType,
    BidStatus,
    GuaranteeAllocation,
    GuaranteeBid,
    GuaranteeLayer,
    GuaranteeRequest,
    GuaranteeRequestPage,
    GuaranteeRequestStatus,
    parse_amount,
)
from trustalloc.guarantee.allocation import HUNDRED, ZERO, allocate_tranches
from trustalloc.ledger.lock import LockService
from trustalloc.metrics.protocols import GuarantorScoreStore
from trustalloc.storage.base import StorageBackend

logger = get_logger("guarantee.engine")

LOCK_SCOPE = "guarantee_request"

OPEN_STATUSES = (GuaranteeRequestStatus.PENDING, GuaranteeRequestStatus.AUCTION_ACTIVE)


def _percent(value: AmountType, name: str) -> Decimal:
    percent = parse_amount(value, name)
    if percent < ZERO or percent > HUNDRED:
        raise ValidationError(f"{name} must be between 0 and 100", details={name: str(percent)})
    return percent


class GuaranteeAllocationEngine:
    """
    Allocates guarantee coverage across risk tranches.

    Usage:
        guarantees = GuaranteeAllocationEngine(storage, auctions, metrics)
        request = await guarantees.create_guarantee_request("issuer-1", "LOAN", 70, 1_000_000)
        auction = await guarantees.create_guarantee_auction(request.id)
        await guarantees.place_guarantee_bid(request.id, "g-1", 30, 2, GuaranteeLayer.FIRST_LOSS)
        ...
        await auctions.close_auction(auction.id)
        result = await guarantees.allocate_guarantees(request.id)
    """

    REQUESTS = "guarantee_requests"
    BIDS = "guarantee_bids"
    ALLOCATIONS = "guarantee_allocations"
    SEQUENCES = "guarantee_bid_sequences"

    def __init__(
        self,
        storage: StorageBackend,
        auctions: AuctionEngine,
        guarantor_scores: GuarantorScoreStore,
        locks: LockService | None = None,
        config: Config | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._storage = storage
        self._auctions = auctions
        self._guarantor_scores = guarantor_scores
        self._config = config or Config()
        self._clock = clock
        self._locks = locks or LockService(
            storage,
            ttl=self._config.lock_ttl_seconds,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
        )

    # ─── Reads ───────────────────────────────────────────────────────

    async def get_guarantee_request(self, request_id: str) -> GuaranteeRequest:
        data = await self._storage.get(self.REQUESTS, request_id)
        if not data:
            raise NotFoundError(
                f"Guarantee request {request_id} not found",
                resource="guarantee_request",
                resource_id=request_id,
            )
        return GuaranteeRequest.from_dict(data)

    async def get_guarantee_bid(self, bid_id: str) -> GuaranteeBid:
        data = await self._storage.get(self.BIDS, bid_id)
        if not data:
            raise NotFoundError(
                f"Guarantee bid {bid_id} not found", resource="guarantee_bid", resource_id=bid_id
            )
        return GuaranteeBid.from_dict(data)

    async def get_allocation(self, allocation_id: str) -> GuaranteeAllocation:
        data = await self._storage.get(self.ALLOCATIONS, allocation_id)
        if not data:
            raise NotFoundError(
                f"Guarantee allocation {allocation_id} not found",
                resource="guarantee_allocation",
                resource_id=allocation_id,
            )
        return GuaranteeAllocation.from_dict(data)

    async def list_guarantee_requests(
        self,
        issuer_id: str | None = None,
        status: GuaranteeRequestStatus | None = None,
        guarantee_type: str | None = None,
        project_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> GuaranteeRequestPage:
        """Guarantee requests newest first, one page at a time."""
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        filters: dict[str, Any] = {}
        if issuer_id:
            filters["issuer_id"] = issuer_id
        if status:
            filters["status"] = status.value
        if guarantee_type:
            filters["guarantee_type"] = guarantee_type
        if project_id:
            filters["project_id"] = project_id

        records = await self._storage.query(self.REQUESTS, filters=filters or None)
        requests = sorted(
            (GuaranteeRequest.from_dict(r) for r in records),
            key=lambda r: r.created_at,
            reverse=True,
        )
        start = (page - 1) * limit
        return GuaranteeRequestPage(
            requests=requests[start:start + limit],
            page=page,
            limit=limit,
            total=len(requests),
        )

    async def list_guarantee_bids(
        self,
        request_id: str,
        status: BidStatus | None = None,
    ) -> list[GuaranteeBid]:
        """Bids on a request in submission order."""
        filters: dict[str, Any] = {"guarantee_request_id": request_id}
        if status:
            filters["status"] = status.value
        records = await self._storage.query(self.BIDS, filters=filters)
        return sorted((GuaranteeBid.from_dict(r) for r in records), key=lambda b: b.sequence)

    async def list_allocations(
        self,
        request_id: str | None = None,
        guarantor_id: str | None = None,
        status: AllocationStatus | None = None,
    ) -> list[GuaranteeAllocation]:
        filters: dict[str, Any] = {}
        if request_id:
            filters["guarantee_request_id"] = request_id
        if guarantor_id:
            filters["guarantor_id"] = guarantor_id
        if status:
            filters["status"] = status.value
        records = await self._storage.query(self.ALLOCATIONS, filters=filters or None)
        allocations = [GuaranteeAllocation.from_dict(r) for r in records]
        allocations.sort(key=lambda a: (a.created_at, a.layer.priority))
        return allocations

    # ─── Requests ────────────────────────────────────────────────────

    async def _save_request(self, request: GuaranteeRequest) -> None:
        await self._storage.save(self.REQUESTS, request.id, request.to_dict())

    async def create_guarantee_request(
        self,
        issuer_id: str,
        guarantee_type: str,
        requested_coverage: AmountType,
        amount: AmountType,
        currency: str = "KES",
        expires_at: datetime | None = None,
        project_id: str | None = None,
        investment_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> GuaranteeRequest:
        """
        Create a guarantee request in PENDING status.

        Raises:
            ValidationError: If coverage is outside [0, 100], the amount is not
                positive, or the expiry is not in the future
        """
        if not issuer_id or not guarantee_type:
            raise ValidationError("issuer_id and guarantee_type are required")
        coverage = _percent(requested_coverage, "requested_coverage")
        request_amount = parse_amount(amount, "amount")
        if request_amount <= ZERO:
            raise ValidationError("amount must be positive")

        now = self._clock()
        if expires_at is not None and require_aware(expires_at, "expires_at") <= now:
            raise ValidationError("expires_at must be in the future")

        request = GuaranteeRequest(
            id=str(uuid.uuid4()),
            issuer_id=issuer_id,
            guarantee_type=guarantee_type,
            requested_coverage=coverage,
            amount=request_amount,
            currency=currency,
            created_at=now,
            expires_at=expires_at,
            project_id=project_id,
            investment_id=investment_id,
            metadata=metadata or {},
        )
        await self._save_request(request)
        logger.info(
            f"Created guarantee request {request.id} for {issuer_id}: "
            f"{coverage}% of {request_amount} {currency}"
        )
        return request

    async def create_guarantee_auction(self, request_id: str) -> Auction:
        """Open and start a GUARANTEE auction for a PENDING request."""
        async with self._locks.hold(LOCK_SCOPE, request_id):
            request = await self.get_guarantee_request(request_id)
            if request.status != GuaranteeRequestStatus.PENDING:
                raise InvalidStateError(
                    "Guarantee request is not in PENDING status",
                    resource="guarantee_request",
                    resource_id=request_id,
                    current_status=request.status.value,
                )

            auction = await self._auctions.open_auction(
                AuctionType.GUARANTEE,
                f"Guarantee Auction: {request.guarantee_type}",
                timedelta(days=self._config.guarantee_auction_days),
                description=(
                    "Reverse auction for guarantee allocation. "
                    f"Coverage: {request.requested_coverage}%, "
                    f"Amount: {request.amount} {request.currency}"
                ),
                reserve_price=ZERO,
                currency=request.currency,
                min_trust_score=self._config.guarantee_auction_min_trust,
                trust_weight=self._config.guarantee_auction_trust_weight,
                project_id=request.project_id,
                guarantee_request_id=request_id,
            )

            request.status = GuaranteeRequestStatus.AUCTION_ACTIVE
            request.auction_id = auction.id
            await self._save_request(request)

        logger.info(f"Guarantee request {request_id} is AUCTION_ACTIVE (auction {auction.id})")
        return auction

    async def expire_guarantee_requests(self) -> list[GuaranteeRequest]:
        """
        Move open requests past their expiry to EXPIRED.

        Pending bids are rejected and a still-open linked auction is cancelled.
        A request whose lock is busy is skipped and picked up by a later sweep.
        """
        now = self._clock()
        records = await self._storage.query(
            self.REQUESTS, filters={"status": [s.value for s in OPEN_STATUSES]}
        )
        due = sorted(
            r["id"] for r in records
            if r.get("expires_at") and datetime.fromisoformat(r["expires_at"]) <= now
        )

        expired: list[GuaranteeRequest] = []
        for request_id in due:
            try:
                async with self._locks.hold(LOCK_SCOPE, request_id):
                    request = await self.get_guarantee_request(request_id)
                    if request.status not in OPEN_STATUSES:
                        continue

                    pending = await self.list_guarantee_bids(request_id, status=BidStatus.PENDING)
                    for bid in pending:
                        bid.status = BidStatus.REJECTED
                    if pending:
                        await self._storage.save_many(
                            self.BIDS, {b.id: b.to_dict() for b in pending}
                        )

                    if request.auction_id:
                        auction = await self._auctions.get_auction(request.auction_id)
                        if not auction.status.is_terminal:
                            await self._auctions.cancel_auction(
                                auction.id, reason="Guarantee request expired"
                            )

                    request.status = GuaranteeRequestStatus.EXPIRED
                    await self._save_request(request)
                    expired.append(request)
            except ConcurrencyError as e:
                logger.warning(f"Skipping expiry of guarantee request {request_id}: {e}")
                continue

            logger.info(f"Guarantee request {request_id} expired")

        return expired

    # ─── Bids ────────────────────────────────────────────────────────

    async def place_guarantee_bid(
        self,
        request_id: str,
        guarantor_id: str,
        coverage_percent: AmountType,
        fee_percent: AmountType,
        layer: GuaranteeLayer | None = None,
        max_capacity: AmountType | None = None,
        notes: str | None = None,
    ) -> GuaranteeBid:
        """
        Offer coverage on a request whose guarantee auction is running.

        Raises:
            InvalidStateError: If the request or its auction is not open
            ValidationError: If coverage is outside [0, 100] or the fee is negative
            InsufficientGuaranteeTrustError: If the guarantor's guarantee trust
                score is missing or below the minimum
            InsufficientCapacityError: If the declared capacity cannot cover
                the requested amount
        """
        async with self._locks.hold(LOCK_SCOPE, request_id):
            request = await self.get_guarantee_request(request_id)
            if request.status != GuaranteeRequestStatus.AUCTION_ACTIVE or not request.auction_id:
                raise InvalidStateError(
                    "Guarantee request is not accepting bids",
                    resource="guarantee_request",
                    resource_id=request_id,
                    current_status=request.status.value,
                )
            now = self._clock()
            auction = await self._auctions.get_auction(request.auction_id)
            if not auction.is_open_at(now):
                raise InvalidStateError(
                    "Guarantee auction is not accepting bids",
                    resource="auction",
                    resource_id=auction.id,
                    current_status=auction.status.value,
                )

            coverage = _percent(coverage_percent, "coverage_percent")
            fee = parse_amount(fee_percent, "fee_percent")
            if fee < ZERO:
                raise ValidationError("fee_percent must not be negative")

            required = self._config.min_guarantee_trust
            score = await self._guarantor_scores.get_guarantee_trust_score(guarantor_id)
            if score is None or score < required:
                raise InsufficientGuaranteeTrustError(
                    "Insufficient guarantee trust score",
                    entity_id=guarantor_id,
                    score=score or 0.0,
                    required=required,
                )

            capacity = (
                parse_amount(max_capacity, "max_capacity") if max_capacity is not None else None
            )
            if capacity is not None and request.amount > capacity:
                raise InsufficientCapacityError(
                    "Requested amount exceeds guarantor capacity",
                    guarantor_id=guarantor_id,
                    capacity=capacity,
                    required_amount=request.amount,
                )

            raw_sequence = await self._storage.atomic_add(self.SEQUENCES, request_id, "1")
            bid = GuaranteeBid(
                id=str(uuid.uuid4()),
                guarantee_request_id=request_id,
                guarantor_id=guarantor_id,
                coverage_percent=coverage,
                fee_percent=fee,
                layer=GuaranteeLayer(layer) if layer else None,
                max_capacity=capacity,
                available_capacity=capacity - request.amount if capacity is not None else None,
                guarantor_trust_score=score,
                effective_bid=effective_bid(fee, auction.trust_weight, score),
                sequence=int(Decimal(raw_sequence)),
                submitted_at=now,
                notes=notes,
            )
            await self._storage.save(self.BIDS, bid.id, bid.to_dict())

        logger.info(
            f"Guarantee bid {bid.id} on {request_id} by {guarantor_id}: "
            f"{coverage}% @ {fee}% ({bid.layer.value if bid.layer else 'no layer'})"
        )
        return bid

    async def withdraw_guarantee_bid(self, bid_id: str, guarantor_id: str) -> GuaranteeBid:
        """Withdraw a PENDING guarantee bid while its request is AUCTION_ACTIVE."""
        request_id = (await self.get_guarantee_bid(bid_id)).guarantee_request_id
        async with self._locks.hold(LOCK_SCOPE, request_id):
            bid = await self.get_guarantee_bid(bid_id)
            if bid.guarantor_id != guarantor_id:
                raise UnauthorizedError(
                    "Only the guarantor can withdraw this bid", actor_id=guarantor_id
                )
            if bid.status != BidStatus.PENDING:
                raise InvalidStateError(
                    "Only PENDING bids can be withdrawn",
                    resource="guarantee_bid",
                    resource_id=bid_id,
                    current_status=bid.status.value,
                )
            request = await self.get_guarantee_request(request_id)
            if request.status != GuaranteeRequestStatus.AUCTION_ACTIVE:
                raise InvalidStateError(
                    "Bids can only be withdrawn while the guarantee auction is running",
                    resource="guarantee_request",
                    resource_id=request_id,
                    current_status=request.status.value,
                )

            bid.status = BidStatus.WITHDRAWN
            bid.withdrawn_at = self._clock()
            await self._storage.save(self.BIDS, bid.id, bid.to_dict())

        logger.info(f"Guarantee bid {bid_id} withdrawn by {guarantor_id}")
        return bid

    # ─── Allocation ──────────────────────────────────────────────────

    async def allocate_guarantees(self, request_id: str) -> AllocationResult:
        """
        Allocate the request's coverage across tranches.

        Requires the linked guarantee auction to be CLOSED. Allocating less
        than the requested coverage is not an error.
        """
        async with self._locks.hold(LOCK_SCOPE, request_id):
            request = await self.get_guarantee_request(request_id)
            if request.status != GuaranteeRequestStatus.AUCTION_ACTIVE or not request.auction_id:
                raise InvalidStateError(
                    "Guarantee request is not in auction phase",
                    resource="guarantee_request",
                    resource_id=request_id,
                    current_status=request.status.value,
                )
            auction = await self._auctions.get_auction(request.auction_id)
            if auction.status != AuctionStatus.CLOSED:
                raise InvalidStateError(
                    "Auction must be closed before allocation",
                    resource="auction",
                    resource_id=auction.id,
                    current_status=auction.status.value,
                )

            now = self._clock()
            pending = await self.list_guarantee_bids(request_id, status=BidStatus.PENDING)
            plan = allocate_tranches(request, pending, now)

            for bid in plan.accepted:
                bid.status = BidStatus.ACCEPTED
                bid.accepted_at = now
            for bid in plan.rejected:
                bid.status = BidStatus.REJECTED
            if plan.allocations:
                await self._storage.save_many(
                    self.ALLOCATIONS, {a.id: a.to_dict() for a in plan.allocations}
                )
            if pending:
                await self._storage.save_many(self.BIDS, {b.id: b.to_dict() for b in pending})

            request.status = GuaranteeRequestStatus.ALLOCATED
            request.allocated_coverage = plan.allocated_coverage
            request.allocated_layers = [
                AllocatedLayer(layer=a.layer, coverage=a.coverage_percent, guarantor_id=a.guarantor_id)
                for a in plan.allocations
            ]
            request.allocated_at = now
            await self._save_request(request)

        if request.unfunded_coverage > ZERO:
            logger.warning(
                f"Guarantee request {request_id} partially allocated: "
                f"{request.allocated_coverage}% of {request.requested_coverage}%"
            )
        logger.info(
            f"Allocated guarantee request {request_id}: {len(plan.allocations)} allocations, "
            f"{len(plan.rejected)} bids rejected"
        )
        return AllocationResult(
            request=request,
            allocations=plan.allocations,
            rejected_bid_ids=[b.id for b in plan.rejected],
        )

    # ─── Allocation status ───────────────────────────────────────────

    async def _close_allocation(
        self,
        allocation_id: str,
        target: AllocationStatus,
    ) -> GuaranteeAllocation:
        request_id = (await self.get_allocation(allocation_id)).guarantee_request_id
        async with self._locks.hold(LOCK_SCOPE, request_id):
            allocation = await self.get_allocation(allocation_id)
            if allocation.status != AllocationStatus.ACTIVE:
                raise InvalidStateError(
                    f"Only ACTIVE allocations can move to {target.value}",
                    resource="guarantee_allocation",
                    resource_id=allocation_id,
                    current_status=allocation.status.value,
                )
            allocation.status = target
            allocation.status_changed_at = self._clock()
            await self._storage.save(self.ALLOCATIONS, allocation.id, allocation.to_dict())

        logger.info(f"Guarantee allocation {allocation_id} is now {target.value}")
        return allocation

    async def draw_allocation(self, allocation_id: str) -> GuaranteeAllocation:
        """The guarantee was called."""
        return await self._close_allocation(allocation_id, AllocationStatus.DRAWN)

    async def release_allocation(self, allocation_id: str) -> GuaranteeAllocation:
        """The underlying obligation was settled."""
        return await self._close_allocation(allocation_id, AllocationStatus.RELEASED)

    async def expire_allocation(self, allocation_id: str) -> GuaranteeAllocation:
        return await self._close_allocation(allocation_id, AllocationStatus.EXPIRED)


__all__ = ["GuaranteeAllocationEngine"]
