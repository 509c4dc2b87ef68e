"""Tests for trust band mapping."""

import pytest

from trustalloc.trust.bands import (
    ExternalTrustBand,
    InternalTrustBand,
    band_description,
    band_for_score,
    is_valid_band,
    to_external_band,
    to_internal_band,
)


@pytest.mark.parametrize(
    "score,band",
    [
        (100.0, ExternalTrustBand.T4),
        (80.0, ExternalTrustBand.T4),
        (79.9, ExternalTrustBand.T3),
        (60.0, ExternalTrustBand.T3),
        (40.0, ExternalTrustBand.T2),
        (39.99, ExternalTrustBand.T1),
        (20.0, ExternalTrustBand.T1),
        (19.9, ExternalTrustBand.T0),
        (0.0, ExternalTrustBand.T0),
    ],
)
def test_band_for_score(score, band):
    assert band_for_score(score) == band


def test_internal_to_external():
    assert to_external_band("A") == ExternalTrustBand.T4
    assert to_external_band("b") == ExternalTrustBand.T3
    assert to_external_band(InternalTrustBand.D) == ExternalTrustBand.T1
    assert to_external_band("Z") == ExternalTrustBand.T0
    assert to_external_band(None) == ExternalTrustBand.T0


def test_external_to_internal():
    assert to_internal_band("T4") == InternalTrustBand.A
    assert to_internal_band("t2") == InternalTrustBand.C
    assert to_internal_band(ExternalTrustBand.T0) == InternalTrustBand.D
    assert to_internal_band("T9") == InternalTrustBand.D
    assert to_internal_band("") == InternalTrustBand.D


def test_descriptions():
    assert band_description("T4") == "Preferred - Highest trust level"
    assert band_description(ExternalTrustBand.T0) == "Unverified - No trust level"
    assert band_description("c") == "Reliable - Medium trust level"
    assert band_description("X") == "Unknown trust level"


def test_is_valid_band():
    assert is_valid_band("T3")
    assert is_valid_band("a")
    assert not is_valid_band("T5")
