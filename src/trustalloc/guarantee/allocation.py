"""
Tranche allocation.

Bids are taken in layer priority order (FIRST_LOSS, MEZZANINE, SENIOR,
then bids without a layer), and within a layer by effective bid with
submission order breaking ties. Each bid receives the smaller of its
offered coverage and the coverage still unallocated. Once nothing remains,
every further bid is rejected. A shortfall is a valid outcome.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from trustalloc.core.types import (
    AllocationStatus,
    BidStatus,
    GuaranteeAllocation,
    GuaranteeBid,
    GuaranteeLayer,
    GuaranteeRequest,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class TranchePlan:
    allocations: list[GuaranteeAllocation] = field(default_factory=list)
    accepted: list[GuaranteeBid] = field(default_factory=list)
    rejected: list[GuaranteeBid] = field(default_factory=list)

    @property
    def allocated_coverage(self) -> Decimal:
        return sum((a.coverage_percent for a in self.allocations), ZERO)


def order_bids(bids: Iterable[GuaranteeBid]) -> list[GuaranteeBid]:
    return sorted(bids, key=lambda b: (b.layer_priority, b.effective_bid, b.sequence))


def allocate_tranches(
    request: GuaranteeRequest,
    bids: Iterable[GuaranteeBid],
    now: datetime,
) -> TranchePlan:
    """Assign the request's coverage to PENDING bids without over-allocating."""
    plan = TranchePlan()
    remaining = request.requested_coverage

    for bid in order_bids(b for b in bids if b.status == BidStatus.PENDING):
        share = min(bid.coverage_percent, remaining)
        if share <= ZERO:
            plan.rejected.append(bid)
            continue

        plan.allocations.append(
            GuaranteeAllocation(
                id=str(uuid.uuid4()),
                guarantee_request_id=request.id,
                guarantor_id=bid.guarantor_id,
                coverage_percent=share,
                fee_percent=bid.fee_percent,
                amount=request.amount * share / HUNDRED,
                layer=bid.layer or GuaranteeLayer.SENIOR,
                created_at=now,
                status=AllocationStatus.ACTIVE,
                expires_at=request.expires_at,
            )
        )
        plan.accepted.append(bid)
        remaining -= share

    return plan


__all__ = ["TranchePlan", "allocate_tranches", "order_bids"]
