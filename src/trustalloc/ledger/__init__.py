"""
Ledger module - trust audit trail and resource locks for trustalloc.
"""

from trustalloc.ledger.ledger import (
    DECAY_RECOVERY_EVENTS,
    CalculationSnapshot,
    TriggerType,
    TrustEvent,
    TrustEventLedger,
    TrustEventType,
)
from trustalloc.ledger.lock import LockService

__all__ = [
    "DECAY_RECOVERY_EVENTS",
    "CalculationSnapshot",
    "TriggerType",
    "TrustEvent",
    "TrustEventLedger",
    "TrustEventType",
    "LockService",
]
