"""Tests for the location guard state machine."""

from __future__ import annotations

import math
from unittest.mock import MagicMock

from faceguard import monitoring
from faceguard.geofence import EARTH_RADIUS_M, CircleBoundary, GeoPoint, Site
from faceguard.location_guard import GuardStatus, LocationGuard
from faceguard.spoof import LocationSample

METRES_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180
YARD = Site(1, "Yard", CircleBoundary(GeoPoint(lat=23.0, lng=69.0), 200))


def _sample(north_m: float = 0.0, accuracy: float = 10.0, seconds: float = 0.0) -> LocationSample:
    return LocationSample(
        lat=23.0 + north_m / METRES_PER_DEGREE,
        lng=69.0,
        accuracy_m=accuracy,
        timestamp_ms=seconds * 1000,
    )


def _guard(**kwargs) -> LocationGuard:
    kwargs.setdefault("enabled", True)
    kwargs.setdefault("max_speed_kmh", 150.0)
    kwargs.setdefault("max_accuracy_m", 100.0)
    kwargs.setdefault("perfect_accuracy_m", 3.0)
    return LocationGuard([YARD], **kwargs)


def test_guard_starts_loading_and_blocks():
    guard = _guard()

    assert guard.state.status is GuardStatus.LOADING
    assert not guard.scanning_allowed


def test_inside_radius_allows_scanning():
    guard = _guard()

    state = guard.evaluate(_sample(150))

    assert state.status is GuardStatus.INSIDE
    assert state.message == "Inside Yard"
    assert guard.scanning_allowed
    assert monitoring.get_health_snapshot()["guard_status"] == "inside"


def test_outside_radius_blocks_with_distance_message():
    guard = _guard()

    state = guard.evaluate(_sample(250))

    assert state.status is GuardStatus.OUTSIDE
    assert state.message == "You are 50m away from Yard"
    assert state.site_name == "Yard"
    assert not guard.scanning_allowed


def test_spoofed_sample_blocks_and_reports():
    on_spoof = MagicMock()
    guard = _guard(on_spoof=on_spoof)
    trusted = _sample(50)
    guard.evaluate(trusted)

    mocked = _sample(50, accuracy=1.0, seconds=30)
    state = guard.evaluate(mocked)

    assert state.status is GuardStatus.SPOOFED
    assert not guard.scanning_allowed
    assert guard.previous_sample == trusted
    on_spoof.assert_called_once()
    result, sample = on_spoof.call_args.args
    assert result.is_spoofed
    assert sample == mocked
    snapshot = monitoring.get_health_snapshot()
    assert snapshot["metrics"]["spoof_total"] == 1
    assert "gps_spoof" in {alert["type"] for alert in snapshot["alerts"]}


def test_teleport_between_samples_is_spoofed():
    guard = _guard()
    guard.evaluate(_sample(0, seconds=0))

    state = guard.evaluate(_sample(50_000, seconds=2))

    assert state.status is GuardStatus.SPOOFED
    assert "Teleport" in state.message


def test_unreliable_sample_blocks_without_replacing_previous():
    guard = _guard()
    trusted = _sample(10)
    guard.evaluate(trusted)

    state = guard.evaluate(_sample(10, accuracy=150, seconds=10))

    assert state.status is GuardStatus.UNRELIABLE
    assert not state.scanning_allowed
    assert guard.previous_sample == trusted


def test_override_bypasses_checks():
    guard = _guard()

    state = guard.evaluate(_sample(5000, accuracy=1.0), override_active=True)

    assert state.status is GuardStatus.OVERRIDE
    assert state.message == "Remote access approved"
    assert guard.scanning_allowed


def test_disabled_guard_always_allows():
    guard = _guard(enabled=False)

    assert guard.state.status is GuardStatus.DISABLED
    assert guard.evaluate(_sample(5000)).scanning_allowed
    assert guard.fail().status is GuardStatus.DISABLED


def test_falls_back_to_default_site_when_none_configured(settings):
    settings.FACEGUARD_DEFAULT_SITE = {"name": "Fallback", "lat": 23.0, "lng": 69.0, "radius": 100}
    guard = LocationGuard([], enabled=True)

    assert [site.name for site in guard.sites] == ["Fallback"]
    assert guard.evaluate(_sample(150)).status is GuardStatus.OUTSIDE
    assert guard.evaluate(_sample(50, seconds=60)).status is GuardStatus.INSIDE


def test_update_sites_rechecks_last_sample():
    guard = _guard()
    guard.evaluate(_sample(100))
    moved_site = Site(2, "Depot", CircleBoundary(GeoPoint(lat=24.0, lng=69.0), 200))

    state = guard.update_sites([moved_site])

    assert state.status is GuardStatus.OUTSIDE
    assert state.site_name == "Depot"


def test_update_sites_keeps_spoofed_state():
    guard = _guard()
    guard.evaluate(_sample(100, accuracy=0.0))

    state = guard.update_sites([YARD])

    assert state.status is GuardStatus.SPOOFED


def test_fail_reports_error_and_blocks():
    guard = _guard()

    state = guard.fail("Location permission denied")

    assert state.status is GuardStatus.ERROR
    assert state.message == "Location permission denied"
    assert not guard.scanning_allowed
