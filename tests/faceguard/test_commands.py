"""Tests for the scanner and enrollment management commands."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from faceguard.exceptions import ModelsUnavailableError
from faceguard.geofence import CircleBoundary, GeoPoint, Site
from faceguard.location_guard import GuardStatus
from faceguard.management.commands.run_scanner import Command as RunScannerCommand
from faceguard.models import SpoofIncident
from faceguard.services import LocationService

pytestmark = pytest.mark.django_db


def test_run_scanner_refuses_outside_site():
    with patch("faceguard.extractor.load_face_models") as load:
        with pytest.raises(CommandError, match="Scanning is blocked"):
            call_command("run_scanner", "--site-lat", "0", "--site-lng", "0")

    load.assert_not_called()


def test_run_scanner_reports_spoofed_position():
    with pytest.raises(CommandError, match="Scanning is blocked"):
        call_command(
            "run_scanner",
            "--site-lat",
            "23.481389",
            "--site-lng",
            "69.501389",
            "--accuracy",
            "0",
            "--user-id",
            "op-9",
        )

    assert SpoofIncident.objects.get().user_id == "op-9"


def test_run_scanner_fails_when_models_are_missing():
    with patch(
        "faceguard.extractor.load_face_models",
        side_effect=ModelsUnavailableError("weights missing"),
    ):
        with pytest.raises(CommandError, match="weights missing"):
            call_command("run_scanner", "--site-lat", "23.481389", "--site-lng", "69.501389")


def test_enroll_worker_validates_input():
    with pytest.raises(CommandError, match="name is required"):
        call_command("enroll_worker", "   ")

    with pytest.raises(CommandError, match="Invalid rate"):
        call_command("enroll_worker", "Ravi", "--rate", "lots")


def test_location_file_feeds_the_guard(tmp_path):
    sites = MagicMock()
    sites.list_active_sites.return_value = [
        Site(1, "Yard", CircleBoundary(GeoPoint(lat=23.0, lng=69.0), 200))
    ]
    location = LocationService.create(sites, enabled=True, report_spoofs=False)
    feed = tmp_path / "position.json"
    command = RunScannerCommand()

    feed.write_text(json.dumps({"lat": 23.0, "lng": 69.0, "accuracy": 10, "timestamp_ms": 0}))
    assert command._refresh_location(location, feed).status is GuardStatus.INSIDE

    feed.write_text(
        json.dumps({"lat": 23.0, "lng": 69.01, "accuracy": 10, "timestamp_ms": 3_600_000})
    )
    assert command._refresh_location(location, feed).status is GuardStatus.OUTSIDE
    assert not location.guard.scanning_allowed

    feed.write_text("{not json")
    assert command._refresh_location(location, feed) is None
    assert location.guard.state.status is GuardStatus.OUTSIDE
