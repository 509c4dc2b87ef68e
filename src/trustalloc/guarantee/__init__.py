"""
Guarantee module - guarantee requests, guarantor bids and tranche allocation.
"""

from trustalloc.guarantee.allocation import TranchePlan, allocate_tranches, order_bids
from trustalloc.guarantee.engine import GuaranteeAllocationEngine

__all__ = [
    "GuaranteeAllocationEngine",
    "TranchePlan",
    "allocate_tranches",
    "order_bids",
]
