"""
Exception hierarchy for the trustalloc engine.

All engine-specific exceptions inherit from TrustAllocError for easy catching.
None of them are retried by the engines: they are business-rule violations,
not transient failures.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class TrustAllocError(Exception):
    """
    Base exception for all trustalloc errors.

    Catch this to handle any engine-related exception.

    Example:
        >>> try:
        ...     await engine.place_bid(...)
        ... except TrustAllocError as e:
        ...     print(f"Bid rejected: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(TrustAllocError):
    """
    Configuration is missing or invalid.

    Raised when:
    - An unknown storage backend is requested
    - A collaborator needs a setting that is not configured
    """

    pass


class NotFoundError(TrustAllocError):
    """
    Referenced resource does not exist.

    Raised when:
    - Auction, bid, guarantee request, guarantee bid or allocation is absent
    """

    def __init__(
        self,
        message: str,
        resource: str,
        resource_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id


class InvalidStateError(TrustAllocError):
    """
    Operation attempted outside the lifecycle state it requires.

    Raised when:
    - Starting an auction that is not PENDING
    - Bidding on an auction that is not ACTIVE or outside its time window
    - Closing an auction before its end time
    - Allocating a guarantee request whose auction is still open

    Example:
        >>> try:
        ...     await auctions.close_auction(auction_id)
        ... except InvalidStateError as e:
        ...     print(f"{e.resource} is {e.current_status}")
    """

    def __init__(
        self,
        message: str,
        resource: str,
        resource_id: str,
        current_status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current_status


class UnauthorizedError(TrustAllocError):
    """
    Actor is not allowed to perform the operation.

    Raised when:
    - Someone other than the bidder withdraws a bid
    - A non-admin attempts a manual trust adjustment
    """

    def __init__(
        self,
        message: str,
        actor_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.actor_id = actor_id


class ValidationError(TrustAllocError):
    """
    Input validation error.

    Raised when:
    - Coverage is outside [0, 100]
    - End time is not after start time
    - A numeric parameter is negative
    """

    pass


class ReservePriceViolation(ValidationError):
    """
    Bid price does not satisfy the auction's reserve price.
    """

    def __init__(
        self,
        message: str,
        price: Decimal,
        reserve_price: Decimal,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.price = price
        self.reserve_price = reserve_price

    def __str__(self) -> str:
        return f"{self.message} | Price: {self.price}, Reserve: {self.reserve_price}"


class InsufficientTrustError(TrustAllocError):
    """
    Entity's trust score is below the required threshold.

    Raised when:
    - A bidder's trust score is below the auction's minimum trust score
    """

    def __init__(
        self,
        message: str,
        entity_id: str,
        score: float,
        required: float,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.entity_id = entity_id
        self.score = score
        self.required = required
        self.shortfall = required - score

    def __str__(self) -> str:
        return (
            f"{self.message} | "
            f"Score: {self.score:.2f}, Required: {self.required:.2f}, "
            f"Shortfall: {self.shortfall:.2f}"
        )


class InsufficientGuaranteeTrustError(InsufficientTrustError):
    """
    Guarantor's guarantee-specific trust score is below the required threshold.
    """

    pass


class InsufficientCapacityError(TrustAllocError):
    """
    Guarantor's declared capacity cannot cover the requested amount.
    """

    def __init__(
        self,
        message: str,
        guarantor_id: str,
        capacity: Decimal,
        required_amount: Decimal,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.guarantor_id = guarantor_id
        self.capacity = capacity
        self.required_amount = required_amount

    def __str__(self) -> str:
        return (
            f"{self.message} | "
            f"Capacity: {self.capacity}, Required: {self.required_amount}"
        )


class ConcurrencyError(TrustAllocError):
    """
    A per-resource lock could not be acquired.

    Raised when another operation holds the lock for longer than the
    configured retry budget.
    """

    def __init__(
        self,
        message: str,
        lock_key: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.lock_key = lock_key


class MetricsUnavailableError(TrustAllocError):
    """
    A metrics collaborator could not be reached.

    Missing data is not an error (it defaults to neutral scores); this is
    raised only for transport failures such as timeouts or 5xx responses.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code
        self.url = url

    def is_server_error(self) -> bool:
        """Check if this is a server-side error."""
        return self.status_code is not None and 500 <= self.status_code < 600
