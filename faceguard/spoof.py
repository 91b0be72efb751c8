"""Physics-based detection of mocked GPS positions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .geofence import haversine_distance_m

logger = logging.getLogger(__name__)

# Speeds are only computed for samples at least this far apart (0.001 h).
MIN_SPEED_INTERVAL_HOURS = 0.001
TELEPORT_DISTANCE_KM = 10.0
TELEPORT_WINDOW_SECONDS = 10.0
TELEPORT_CONFIDENCE = 0.95
POOR_ACCURACY_CONFIDENCE = 0.3
PERFECT_ACCURACY_CONFIDENCE = 0.7


@dataclass(frozen=True)
class LocationSample:
    lat: float
    lng: float
    accuracy_m: float
    timestamp_ms: float


@dataclass(frozen=True)
class SpoofCheckResult:
    """Outcome of :func:`detect_spoof`.

    ``unreliable`` marks a sample that is not spoofed but too imprecise to
    use for a geofence decision.
    """

    is_spoofed: bool
    confidence: float
    reason: Optional[str] = None
    speed_kmh: Optional[float] = None
    unreliable: bool = False


def detect_spoof(
    current: LocationSample,
    previous: Optional[LocationSample] = None,
    *,
    max_speed_kmh: float = 150.0,
    max_accuracy_m: float = 100.0,
    perfect_accuracy_m: float = 3.0,
) -> SpoofCheckResult:
    """Classify ``current`` against the previous trusted sample.

    Checks short-circuit in a fixed order: accuracy too poor, accuracy too
    perfect, impossible travel speed, then teleport (more than 10 km in under
    10 seconds, evaluated even when the samples are too close in time for a
    speed estimate).
    """

    accuracy = current.accuracy_m
    if accuracy > max_accuracy_m:
        return SpoofCheckResult(
            is_spoofed=False,
            confidence=POOR_ACCURACY_CONFIDENCE,
            reason=f"GPS accuracy too poor: {accuracy:g}m (need <{max_accuracy_m:g}m)",
            unreliable=True,
        )

    if accuracy == 0 or accuracy < perfect_accuracy_m:
        return SpoofCheckResult(
            is_spoofed=True,
            confidence=PERFECT_ACCURACY_CONFIDENCE,
            reason=f"Suspiciously perfect accuracy: {accuracy:g}m (likely mock GPS)",
        )

    if previous is None:
        return SpoofCheckResult(is_spoofed=False, confidence=0.0)

    distance_km = (
        haversine_distance_m(previous.lat, previous.lng, current.lat, current.lng) / 1000.0
    )
    elapsed_ms = current.timestamp_ms - previous.timestamp_ms
    elapsed_hours = elapsed_ms / 3_600_000
    elapsed_seconds = elapsed_ms / 1000

    speed: Optional[float] = None
    if elapsed_hours > MIN_SPEED_INTERVAL_HOURS:
        speed = distance_km / elapsed_hours
        if speed > max_speed_kmh:
            return SpoofCheckResult(
                is_spoofed=True,
                confidence=min(speed / 1000, 1.0),
                reason=(
                    f"Impossible travel speed: {round(speed)} km/h "
                    f"in {round(elapsed_hours * 60)} minutes"
                ),
                speed_kmh=speed,
            )

    if distance_km > TELEPORT_DISTANCE_KM and elapsed_seconds < TELEPORT_WINDOW_SECONDS:
        return SpoofCheckResult(
            is_spoofed=True,
            confidence=TELEPORT_CONFIDENCE,
            reason=f"Teleport detected: {round(distance_km)}km in {elapsed_seconds:g}s",
            speed_kmh=speed,
        )

    return SpoofCheckResult(is_spoofed=False, confidence=0.0, speed_kmh=speed)


__all__ = ["LocationSample", "SpoofCheckResult", "detect_spoof"]
