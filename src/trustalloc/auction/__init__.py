"""
Auction module - reverse auctions with trust-weighted bids.
"""

from trustalloc.auction.clearing import ClearingOutcome, clear_bids, effective_bid, rank_bids
from trustalloc.auction.engine import AuctionEngine

__all__ = [
    "AuctionEngine",
    "ClearingOutcome",
    "clear_bids",
    "effective_bid",
    "rank_bids",
]
