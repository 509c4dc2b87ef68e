"""
Trust bands.

Internal bands run A (highest) to D; the external scale runs T4 (highest)
to T0 (unverified). T0 and T1 both map to D internally.
"""

from __future__ import annotations

from enum import Enum


class InternalTrustBand(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class ExternalTrustBand(str, Enum):
    T0 = "T0"
    T1 = "T1"
    T2 = "T2"
    T3 = "T3"
    T4 = "T4"


# (minimum aggregate score, band), highest first
SCORE_BANDS = (
    (80.0, ExternalTrustBand.T4),
    (60.0, ExternalTrustBand.T3),
    (40.0, ExternalTrustBand.T2),
    (20.0, ExternalTrustBand.T1),
)

_TO_EXTERNAL = {
    "A": ExternalTrustBand.T4,
    "B": ExternalTrustBand.T3,
    "C": ExternalTrustBand.T2,
    "D": ExternalTrustBand.T1,
}

_TO_INTERNAL = {
    "T4": InternalTrustBand.A,
    "T3": InternalTrustBand.B,
    "T2": InternalTrustBand.C,
    "T1": InternalTrustBand.D,
    "T0": InternalTrustBand.D,
}

_DESCRIPTIONS = {
    "A": "Preferred - Highest trust level",
    "B": "Trusted - High trust level",
    "C": "Reliable - Medium trust level",
    "D": "Verified - Basic trust level",
    "T4": "Preferred - Highest trust level",
    "T3": "Trusted - High trust level",
    "T2": "Reliable - Medium trust level",
    "T1": "Verified - Basic trust level",
    "T0": "Unverified - No trust level",
}


def band_for_score(score: float) -> ExternalTrustBand:
    for minimum, band in SCORE_BANDS:
        if score >= minimum:
            return band
    return ExternalTrustBand.T0


def to_external_band(internal: str | None) -> ExternalTrustBand:
    """Map an internal band (A-D) to the external scale; unknown maps to T0."""
    if not internal:
        return ExternalTrustBand.T0
    return _TO_EXTERNAL.get(str(getattr(internal, "value", internal)).upper(), ExternalTrustBand.T0)


def to_internal_band(external: str | None) -> InternalTrustBand:
    """Map an external band (T0-T4) to the internal scale; unknown maps to D."""
    if not external:
        return InternalTrustBand.D
    return _TO_INTERNAL.get(str(getattr(external, "value", external)).upper(), InternalTrustBand.D)


def band_description(band: str) -> str:
    return _DESCRIPTIONS.get(str(getattr(band, "value", band)).upper(), "Unknown trust level")


def is_valid_band(band: str) -> bool:
    return str(getattr(band, "value", band)).upper() in _DESCRIPTIONS


__all__ = [
    "ExternalTrustBand",
    "InternalTrustBand",
    "band_description",
    "band_for_score",
    "is_valid_band",
    "to_external_band",
    "to_internal_band",
]
