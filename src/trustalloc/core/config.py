"""
Configuration management for trustalloc.

Handles loading configuration from environment variables and validation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any


def _get_env_var(name: str, default: str | None = None, required: bool = False) -> str | None:
    """Get environment variable with optional default."""
    value = os.environ.get(name, default)
    if required and not value:
        raise ValueError(f"Required environment variable {name} is not set")
    return value


def _env_number(name: str, cast: type, default: Any) -> Any:
    raw = _get_env_var(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except (ValueError, ArithmeticError) as e:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}") from e


@dataclass(frozen=True)
class Config:
    """Engine configuration."""

    storage_backend: str = "memory"
    redis_url: str | None = None
    log_level: str = "INFO"

    # Trust scores
    score_staleness_hours: float = 24.0  # get_trust_score recalculates once older than this
    cache_ttl_seconds: int = 300
    trust_alert_threshold: float = 40.0  # THRESHOLD_BREACHED when crossed downward

    # Per-resource locks
    lock_ttl_seconds: int = 30
    lock_retry_count: int = 20
    lock_retry_delay: float = 0.05

    # Metrics collaborator over HTTP
    metrics_base_url: str | None = None
    http_timeout: float = 10.0

    # Guarantee auctions
    guarantee_auction_days: int = 7
    guarantee_auction_min_trust: float = 60.0
    guarantee_auction_trust_weight: Decimal = Decimal("1.2")
    min_guarantee_trust: float = 50.0

    # Decay batch
    decay_batch_size: int = 100
    decay_max_days: int = 365

    env: str = "development"

    def __post_init__(self) -> None:
        if self.score_staleness_hours <= 0:
            raise ValueError("score_staleness_hours must be positive")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        if not 0 <= self.trust_alert_threshold <= 100:
            raise ValueError("trust_alert_threshold must be between 0 and 100")
        if self.lock_ttl_seconds <= 0:
            raise ValueError("lock_ttl_seconds must be positive")
        if self.lock_retry_count < 0:
            raise ValueError("lock_retry_count must not be negative")
        if self.guarantee_auction_days <= 0:
            raise ValueError("guarantee_auction_days must be positive")
        if self.guarantee_auction_trust_weight < 0:
            raise ValueError("guarantee_auction_trust_weight must not be negative")
        if self.decay_batch_size <= 0:
            raise ValueError("decay_batch_size must be positive")
        if self.decay_max_days < 30:
            raise ValueError("decay_max_days must be at least 30")

    @classmethod
    def from_env(cls, **overrides: Any) -> Config:
        """Load configuration from environment variables."""
        values: dict[str, Any] = {
            "storage_backend": _get_env_var("TRUSTALLOC_STORAGE_BACKEND", default="memory"),
            "redis_url": _get_env_var("TRUSTALLOC_REDIS_URL"),
            "log_level": _get_env_var("TRUSTALLOC_LOG_LEVEL", default="INFO"),
            "score_staleness_hours": _env_number(
                "TRUSTALLOC_SCORE_STALENESS_HOURS", float, cls.score_staleness_hours
            ),
            "cache_ttl_seconds": _env_number(
                "TRUSTALLOC_CACHE_TTL_SECONDS", int, cls.cache_ttl_seconds
            ),
            "trust_alert_threshold": _env_number(
                "TRUSTALLOC_TRUST_ALERT_THRESHOLD", float, cls.trust_alert_threshold
            ),
            "lock_ttl_seconds": _env_number(
                "TRUSTALLOC_LOCK_TTL_SECONDS", int, cls.lock_ttl_seconds
            ),
            "metrics_base_url": _get_env_var("TRUSTALLOC_METRICS_URL"),
            "http_timeout": _env_number("TRUSTALLOC_HTTP_TIMEOUT", float, cls.http_timeout),
            "guarantee_auction_days": _env_number(
                "TRUSTALLOC_GUARANTEE_AUCTION_DAYS", int, cls.guarantee_auction_days
            ),
            "min_guarantee_trust": _env_number(
                "TRUSTALLOC_MIN_GUARANTEE_TRUST", float, cls.min_guarantee_trust
            ),
            "decay_batch_size": _env_number(
                "TRUSTALLOC_DECAY_BATCH_SIZE", int, cls.decay_batch_size
            ),
            "env": _get_env_var("TRUSTALLOC_ENV", default="development"),
        }
        values.update(overrides)
        return cls(**values)

    def masked_redis_url(self) -> str | None:
        """Return the Redis URL with any password masked for safe logging."""
        if not self.redis_url or "@" not in self.redis_url:
            return self.redis_url
        scheme, _, rest = self.redis_url.partition("://")
        _, _, host = rest.rpartition("@")
        return f"{scheme}://****@{host}"
