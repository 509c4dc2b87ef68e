"""
Trust module - per-entity trust scores, decay and recovery.
"""

from trustalloc.trust.bands import (
    ExternalTrustBand,
    InternalTrustBand,
    band_description,
    band_for_score,
    to_external_band,
    to_internal_band,
)
from trustalloc.trust.cache import TrustScoreCache
from trustalloc.trust.engine import TrustScoreEngine
from trustalloc.trust.types import (
    DecayBatchResult,
    DimensionExplanation,
    DimensionScores,
    TrustExplanation,
    TrustScore,
)

__all__ = [
    "DecayBatchResult",
    "DimensionExplanation",
    "DimensionScores",
    "ExternalTrustBand",
    "InternalTrustBand",
    "TrustExplanation",
    "TrustScore",
    "TrustScoreCache",
    "TrustScoreEngine",
    "band_description",
    "band_for_score",
    "to_external_band",
    "to_internal_band",
]
