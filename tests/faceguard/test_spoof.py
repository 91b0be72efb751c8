"""Tests for GPS spoof heuristics."""

from __future__ import annotations

import pytest

from faceguard.spoof import LocationSample, detect_spoof

# One degree of latitude is roughly 111.19 km.
KM_PER_DEGREE = 111.19493


def _sample(lat=23.0, lng=69.0, accuracy=10.0, seconds=0.0) -> LocationSample:
    return LocationSample(lat=lat, lng=lng, accuracy_m=accuracy, timestamp_ms=seconds * 1000)


def test_stationary_sample_with_normal_accuracy_is_clean():
    result = detect_spoof(_sample(seconds=30), _sample())

    assert not result.is_spoofed
    assert not result.unreliable
    assert result.reason is None


def test_first_sample_is_clean():
    assert not detect_spoof(_sample()).is_spoofed


def test_poor_accuracy_is_unreliable_not_spoofed():
    result = detect_spoof(_sample(accuracy=150))

    assert not result.is_spoofed
    assert result.unreliable
    assert result.confidence == 0.3
    assert result.reason.startswith("GPS accuracy too poor")


@pytest.mark.parametrize("accuracy", [0.0, 1.5])
def test_suspiciously_perfect_accuracy_is_spoofed(accuracy):
    result = detect_spoof(_sample(accuracy=accuracy))

    assert result.is_spoofed
    assert result.confidence == 0.7
    assert "perfect accuracy" in result.reason


def test_poor_accuracy_takes_precedence_over_travel_checks():
    far = _sample(lat=23.0 + 50 / KM_PER_DEGREE, accuracy=500, seconds=5)

    result = detect_spoof(far, _sample())

    assert not result.is_spoofed
    assert result.unreliable


def test_fifty_km_in_five_seconds_is_impossible_speed():
    far = _sample(lat=23.0 + 50 / KM_PER_DEGREE, seconds=5)

    result = detect_spoof(far, _sample())

    assert result.is_spoofed
    assert result.reason.startswith("Impossible travel speed")
    assert result.confidence == 1.0
    assert result.speed_kmh == pytest.approx(36000, rel=0.01)


def test_jump_too_quick_for_speed_estimate_is_a_teleport():
    far = _sample(lat=23.0 + 50 / KM_PER_DEGREE, seconds=2)

    result = detect_spoof(far, _sample())

    assert result.is_spoofed
    assert result.reason.startswith("Teleport detected: 50km")
    assert result.confidence == 0.95
    assert result.speed_kmh is None


def test_fast_but_plausible_travel_is_clean():
    # 2 km in one minute is 120 km/h.
    moved = _sample(lat=23.0 + 2 / KM_PER_DEGREE, seconds=60)

    result = detect_spoof(moved, _sample())

    assert not result.is_spoofed
    assert result.speed_kmh == pytest.approx(120, rel=0.01)


def test_speed_confidence_scales_with_speed():
    # 10 km in one minute is 600 km/h.
    moved = _sample(lat=23.0 + 10 / KM_PER_DEGREE, seconds=60)

    result = detect_spoof(moved, _sample())

    assert result.is_spoofed
    assert result.confidence == pytest.approx(0.6, rel=0.01)
