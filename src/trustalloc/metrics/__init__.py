"""Collaborator interfaces and providers for the metrics the engines consume."""

from trustalloc.metrics.http import HttpMetricsProvider
from trustalloc.metrics.protocols import (
    ActivityClock,
    BehaviorMetricsStore,
    GuarantorScoreStore,
    IdentityStore,
    MetricsProvider,
    ReadinessStore,
)
from trustalloc.metrics.stored import StoredMetricsProvider
from trustalloc.metrics.types import BehaviorMetrics, KycRecord, KycStatus, ReadinessMetrics

__all__ = [
    "ActivityClock",
    "BehaviorMetrics",
    "BehaviorMetricsStore",
    "GuarantorScoreStore",
    "HttpMetricsProvider",
    "IdentityStore",
    "KycRecord",
    "KycStatus",
    "MetricsProvider",
    "ReadinessMetrics",
    "ReadinessStore",
    "StoredMetricsProvider",
]
