from datetime import datetime, timedelta, timezone

import pytest

from trustalloc.auction.engine import AuctionEngine
from trustalloc.core.config import Config
from trustalloc.guarantee.engine import GuaranteeAllocationEngine
from trustalloc.metrics.stored import StoredMetricsProvider
from trustalloc.storage.memory import InMemoryStorage
from trustalloc.trust.engine import TrustScoreEngine
from trustalloc.trust.types import TrustScore

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Controllable time source for the engines."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def metrics(storage) -> StoredMetricsProvider:
    return StoredMetricsProvider(storage)


@pytest.fixture
def config() -> Config:
    return Config(lock_retry_count=50, lock_retry_delay=0.001)


@pytest.fixture
def trust_engine(storage, metrics, config, clock) -> TrustScoreEngine:
    return TrustScoreEngine(storage, metrics, config=config, clock=clock)


@pytest.fixture
def auction_engine(storage, trust_engine, config, clock) -> AuctionEngine:
    return AuctionEngine(storage, trust_engine, config=config, clock=clock)


@pytest.fixture
def guarantee_engine(storage, auction_engine, metrics, config, clock) -> GuaranteeAllocationEngine:
    return GuaranteeAllocationEngine(storage, auction_engine, metrics, config=config, clock=clock)


@pytest.fixture
def seed_trust(storage, clock):
    """Store a freshly calculated trust score with every dimension at `value`."""

    async def seed(entity_id: str, value: float) -> TrustScore:
        score = TrustScore(
            entity_id=entity_id,
            identity_trust=value,
            transaction_trust=value,
            financial_trust=value,
            performance_trust=value,
            learning_trust=value,
            behavior_score=50.0,
            trust_score=value,
            last_calculated_at=clock(),
        )
        await storage.save(TrustScoreEngine.COLLECTION, entity_id, score.to_dict())
        return score

    return seed
