"""TrustAlloc client: wires storage, collaborators and the three engines."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from trustalloc.auction.engine import AuctionEngine
from trustalloc.core.clock import Clock, utcnow
from trustalloc.core.config import Config
from trustalloc.core.logging import configure_logging, get_logger
from trustalloc.core.types import (
    AllocationResult,
    AmountType,
    Auction,
    AuctionCloseResult,
    AuctionPage,
    AuctionStatus,
    AuctionType,
    Bid,
    ClearingMethod,
    GuaranteeAllocation,
    GuaranteeBid,
    GuaranteeLayer,
    GuaranteeRequest,
)
from trustalloc.guarantee.engine import GuaranteeAllocationEngine
from trustalloc.ledger.ledger import TriggerType, TrustEvent, TrustEventLedger
from trustalloc.ledger.lock import LockService
from trustalloc.metrics.http import HttpMetricsProvider
from trustalloc.metrics.protocols import MetricsProvider
from trustalloc.metrics.stored import StoredMetricsProvider
from trustalloc.storage import get_storage
from trustalloc.storage.base import StorageBackend
from trustalloc.trust.cache import TrustScoreCache
from trustalloc.trust.engine import TrustScoreEngine
from trustalloc.trust.types import DecayBatchResult, TrustExplanation, TrustScore


class TrustAlloc:
    """
    Main entry point for the trust-weighted allocation engine.

    The host service layer calls these operations; every collaborator the
    engines need (identity, behavior and readiness metrics, the activity
    clock, guarantor scores) comes from one metrics provider.

    Usage:
        >>> async with TrustAlloc() as engine:
        ...     score = await engine.get_trust_score("user-42")
    """

    def __init__(
        self,
        config: Config | None = None,
        storage: StorageBackend | None = None,
        metrics: MetricsProvider | None = None,
        clock: Clock = utcnow,
    ) -> None:
        """
        Initialize the engines.

        Args:
            config: Engine configuration (default: Config.from_env())
            storage: Storage backend (default: built from config.storage_backend)
            metrics: Collaborator provider (default: HttpMetricsProvider when
                config.metrics_base_url is set, else StoredMetricsProvider)
            clock: Time source, injectable for tests
        """
        self._config = config or Config.from_env()

        configure_logging(level=self._config.log_level)
        self._logger = get_logger("client")

        if storage is None:
            kwargs: dict[str, Any] = {}
            if self._config.storage_backend == "redis" and self._config.redis_url:
                kwargs["redis_url"] = self._config.redis_url
                self._logger.info(f"Using Redis at {self._config.masked_redis_url()}")
            storage = get_storage(self._config.storage_backend, **kwargs)
        self._storage = storage

        if metrics is None:
            if self._config.metrics_base_url:
                metrics = HttpMetricsProvider(
                    base_url=self._config.metrics_base_url,
                    timeout=self._config.http_timeout,
                )
            else:
                metrics = StoredMetricsProvider(self._storage)
        self._metrics = metrics

        self._logger.info(
            f"Initializing TrustAlloc (storage: {self._config.storage_backend}, "
            f"metrics: {type(metrics).__name__}, env: {self._config.env})"
        )

        self._locks = LockService(
            self._storage,
            ttl=self._config.lock_ttl_seconds,
            retry_count=self._config.lock_retry_count,
            retry_delay=self._config.lock_retry_delay,
        )
        self._ledger = TrustEventLedger(self._storage)
        self._trust = TrustScoreEngine(
            self._storage,
            self._metrics,
            ledger=self._ledger,
            cache=TrustScoreCache(self._storage, ttl=self._config.cache_ttl_seconds, clock=clock),
            locks=self._locks,
            config=self._config,
            clock=clock,
        )
        self._auctions = AuctionEngine(
            self._storage, self._trust, locks=self._locks, config=self._config, clock=clock
        )
        self._guarantees = GuaranteeAllocationEngine(
            self._storage,
            self._auctions,
            self._metrics,
            locks=self._locks,
            config=self._config,
            clock=clock,
        )

    @property
    def config(self) -> Config:
        return self._config

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def metrics(self) -> MetricsProvider:
        return self._metrics

    @property
    def trust(self) -> TrustScoreEngine:
        return self._trust

    @property
    def auctions(self) -> AuctionEngine:
        return self._auctions

    @property
    def guarantees(self) -> GuaranteeAllocationEngine:
        return self._guarantees

    @property
    def ledger(self) -> TrustEventLedger:
        """Trust event audit trail."""
        return self._ledger

    async def __aenter__(self) -> TrustAlloc:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close HTTP clients and storage connections."""
        for resource in (self._metrics, self._storage):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    # ─── Trust ───────────────────────────────────────────────────────

    async def recalculate_trust_score(
        self,
        entity_id: str,
        trigger_type: TriggerType = TriggerType.AUTOMATIC,
        trigger_entity_id: str | None = None,
        trigger_entity_type: str | None = None,
    ) -> TrustScore:
        return await self._trust.recalculate(
            entity_id, trigger_type, trigger_entity_id, trigger_entity_type
        )

    async def get_trust_score(self, entity_id: str) -> TrustScore:
        return await self._trust.get_trust_score(entity_id)

    async def explain_trust_score(self, entity_id: str) -> TrustExplanation:
        return await self._trust.explain_trust_score(entity_id)

    async def adjust_trust_score(
        self,
        entity_id: str,
        delta: float,
        reason: str,
        admin_id: str,
    ) -> TrustScore:
        return await self._trust.adjust_trust_score(entity_id, delta, reason, admin_id)

    async def track_activity(
        self,
        entity_id: str,
        activity_type: TriggerType = TriggerType.BEHAVIOR,
        activity_value: float = 1.0,
    ) -> TrustScore:
        return await self._trust.track_activity(entity_id, activity_type, activity_value)

    async def get_trust_history(self, entity_id: str, limit: int = 50) -> list[TrustEvent]:
        return await self._trust.get_trust_history(entity_id, limit=limit)

    async def get_decay_recovery_history(
        self, entity_id: str, limit: int = 50
    ) -> list[TrustEvent]:
        return await self._trust.get_decay_recovery_history(entity_id, limit=limit)

    async def process_trust_decay_batch(
        self,
        batch_size: int | None = None,
        max_days: int | None = None,
        after: str | None = None,
    ) -> DecayBatchResult:
        return await self._trust.process_trust_decay_batch(batch_size, max_days, after)

    # ─── Auctions ────────────────────────────────────────────────────

    async def create_auction(
        self,
        auction_type: AuctionType,
        title: str,
        start_time: datetime,
        end_time: datetime,
        reserve_price: AmountType | None = None,
        target_amount: AmountType | None = None,
        min_trust_score: float | None = None,
        trust_weight: AmountType = "1.0",
        clearing_method: ClearingMethod = ClearingMethod.FIRST_PRICE,
        **options: Any,
    ) -> Auction:
        return await self._auctions.create_auction(
            auction_type,
            title,
            start_time,
            end_time,
            reserve_price=reserve_price,
            target_amount=target_amount,
            min_trust_score=min_trust_score,
            trust_weight=trust_weight,
            clearing_method=clearing_method,
            **options,
        )

    async def start_auction(self, auction_id: str) -> Auction:
        return await self._auctions.start_auction(auction_id)

    async def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        price: AmountType,
        amount: AmountType | None = None,
        notes: str | None = None,
    ) -> Bid:
        return await self._auctions.place_bid(auction_id, bidder_id, price, amount, notes)

    async def withdraw_bid(self, bid_id: str, bidder_id: str) -> Bid:
        return await self._auctions.withdraw_bid(bid_id, bidder_id)

    async def close_auction(self, auction_id: str) -> AuctionCloseResult:
        return await self._auctions.close_auction(auction_id)

    async def cancel_auction(self, auction_id: str, reason: str | None = None) -> Auction:
        return await self._auctions.cancel_auction(auction_id, reason)

    async def extend_auction(self, auction_id: str, new_end_time: datetime) -> Auction:
        return await self._auctions.extend_auction(auction_id, new_end_time)

    async def get_auction(self, auction_id: str) -> Auction:
        return await self._auctions.get_auction(auction_id)

    async def list_auctions(
        self,
        auction_type: AuctionType | None = None,
        status: AuctionStatus | None = None,
        project_id: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> AuctionPage:
        return await self._auctions.list_auctions(auction_type, status, project_id, page, limit)

    # ─── Guarantees ──────────────────────────────────────────────────

    async def create_guarantee_request(
        self,
        issuer_id: str,
        guarantee_type: str,
        requested_coverage: AmountType,
        amount: AmountType,
        **options: Any,
    ) -> GuaranteeRequest:
        return await self._guarantees.create_guarantee_request(
            issuer_id, guarantee_type, requested_coverage, amount, **options
        )

    async def create_guarantee_auction(self, request_id: str) -> Auction:
        return await self._guarantees.create_guarantee_auction(request_id)

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
        return await self._guarantees.place_guarantee_bid(
            request_id, guarantor_id, coverage_percent, fee_percent, layer, max_capacity, notes
        )

    async def withdraw_guarantee_bid(self, bid_id: str, guarantor_id: str) -> GuaranteeBid:
        return await self._guarantees.withdraw_guarantee_bid(bid_id, guarantor_id)

    async def allocate_guarantees(self, request_id: str) -> AllocationResult:
        return await self._guarantees.allocate_guarantees(request_id)

    async def get_guarantee_request(self, request_id: str) -> GuaranteeRequest:
        return await self._guarantees.get_guarantee_request(request_id)

    async def list_allocations(self, request_id: str) -> list[GuaranteeAllocation]:
        return await self._guarantees.list_allocations(request_id=request_id)

    async def expire_guarantee_requests(self) -> list[GuaranteeRequest]:
        return await self._guarantees.expire_guarantee_requests()
