"""
Reverse-auction clearing.

Bids are ranked by effective bid (price weighted by trust), lowest first,
with submission order breaking ties. The same ranking drives both the
clearing price and the acceptance pass:

1. cleared_price = raw price of rank 1 (FIRST_PRICE), or of rank 2
   (SECOND_PRICE, when at least two bids exist)
2. Walk the ranking and accept bids while their raw price is at or under
   the cleared price; the first bid above it ends the walk
3. Everything not accepted is rejected

Because trust weighting can reorder bids relative to raw price, a bid
with a low raw price but a poor effective bid can be rejected after the
walk stops. That is the intended outcome: rank decides.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from trustalloc.core.types import Bid, BidStatus, ClearingMethod


@dataclass
class ClearingOutcome:
    cleared_price: Decimal | None
    accepted: list[Bid] = field(default_factory=list)
    rejected: list[Bid] = field(default_factory=list)


def effective_bid(price: Decimal, trust_weight: Decimal, trust_score: float) -> Decimal:
    """price * trust_weight * trust/100."""
    return price * trust_weight * Decimal(str(trust_score)) / Decimal(100)


def rank_bids(bids: Iterable[Bid]) -> list[Bid]:
    return sorted(bids, key=lambda b: (b.effective_bid, b.sequence))


def clear_bids(
    bids: Iterable[Bid],
    method: ClearingMethod = ClearingMethod.FIRST_PRICE,
) -> ClearingOutcome:
    """Pick the clearing price and split PENDING bids into accepted/rejected."""
    ranked = rank_bids(b for b in bids if b.status == BidStatus.PENDING)
    if not ranked:
        return ClearingOutcome(cleared_price=None)

    if method == ClearingMethod.SECOND_PRICE and len(ranked) >= 2:
        cleared_price = ranked[1].price
    else:
        cleared_price = ranked[0].price

    outcome = ClearingOutcome(cleared_price=cleared_price)
    cutoff = len(ranked)
    for index, bid in enumerate(ranked):
        if bid.price > cleared_price:
            cutoff = index
            break
        outcome.accepted.append(bid)
    outcome.rejected.extend(ranked[cutoff:])
    return outcome


__all__ = ["ClearingOutcome", "clear_bids", "effective_bid", "rank_bids"]
