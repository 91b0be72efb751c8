"""Management command that runs the attendance scanner on the local camera."""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError

from faceguard.config import is_liveness_required
from faceguard.exceptions import ModelsUnavailableError
from faceguard.scanner import ScanOutcome, ScanOutcomeKind, ScanSession
from faceguard.services import AttendanceService, LocationService
from faceguard.spoof import LocationSample
from faceguard.stores import (
    DjangoAccessOverrideStore,
    DjangoAttendanceStore,
    DjangoSiteStore,
    DjangoWorkerStore,
)


logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Scan faces from the configured camera and record check-ins and check-outs"

    def add_arguments(self, parser):
        parser.add_argument(
            "--site-lat",
            type=float,
            required=True,
            help="Latitude reported by the scanning device",
        )
        parser.add_argument(
            "--site-lng",
            type=float,
            required=True,
            help="Longitude reported by the scanning device",
        )
        parser.add_argument(
            "--accuracy",
            type=float,
            default=10.0,
            help="Reported GPS accuracy in metres (default: 10)",
        )
        parser.add_argument(
            "--user-id",
            type=str,
            default=None,
            help="Operator id used for remote-access overrides and spoof reports",
        )
        parser.add_argument(
            "--location-file",
            type=Path,
            default=None,
            help=(
                "JSON file with lat, lng and accuracy that a GPS reader keeps current; "
                "re-read while scanning. Without it the device is treated as a fixed kiosk "
                "at --site-lat/--site-lng."
            ),
        )
        parser.add_argument(
            "--location-interval",
            type=float,
            default=5.0,
            help="Seconds between location file reads (default: 5)",
        )
        parser.add_argument(
            "--duration",
            type=float,
            default=None,
            help="Stop after this many seconds (default: run until interrupted)",
        )

    def handle(self, *args, **options):
        from faceguard.extractor import DescriptorExtractor, load_face_models
        from faceguard.webcam_manager import get_webcam_manager

        location = LocationService.create(
            DjangoSiteStore(),
            DjangoAccessOverrideStore(),
            user_id=options["user_id"],
        )
        sample = LocationSample(
            lat=options["site_lat"],
            lng=options["site_lng"],
            accuracy_m=options["accuracy"],
            timestamp_ms=int(time.time() * 1000),
        )
        state = location.update(sample)
        self.stdout.write(f"Location: {state.status.value} - {state.message}")
        if not state.scanning_allowed:
            raise CommandError(f"Scanning is blocked: {state.message}")

        try:
            handle = load_face_models()
        except ModelsUnavailableError as exc:
            raise CommandError(str(exc)) from exc

        landmarker = None
        if is_liveness_required():
            from faceguard.liveness import MeshLandmarker

            try:
                landmarker = MeshLandmarker()
            except ModelsUnavailableError as exc:
                raise CommandError(str(exc)) from exc

        manager = get_webcam_manager()
        try:
            scan_source = manager.frame_consumer()
            box_source = manager.frame_consumer()
        except Exception as exc:
            raise CommandError(f"Could not open the camera: {exc}") from exc

        session = ScanSession(
            scan_source,
            DescriptorExtractor(handle),
            AttendanceService(DjangoWorkerStore(), DjangoAttendanceStore()),
            location.guard,
            box_source=box_source,
            landmarker=landmarker,
            on_outcome=self._report,
        )

        duration = options["duration"]
        deadline = None if duration is None else time.monotonic() + max(0.0, duration)
        location_file = options["location_file"]
        next_location_read = time.monotonic() + options["location_interval"]
        session.start()
        self.stdout.write(self.style.SUCCESS("Scanner running. Press Ctrl+C to stop."))
        try:
            while deadline is None or time.monotonic() < deadline:
                time.sleep(0.5)
                if location_file is not None and time.monotonic() >= next_location_read:
                    self._refresh_location(location, location_file)
                    next_location_read = time.monotonic() + options["location_interval"]
        except KeyboardInterrupt:
            self.stdout.write("Stopping scanner...")
        finally:
            session.stop()
            if landmarker is not None:
                landmarker.close()

    def _refresh_location(self, location: LocationService, path: Path):
        """Feed the latest position from ``path`` to the guard.

        An unreadable file keeps the previous guard state.
        """

        try:
            payload = json.loads(path.read_text())
            sample = LocationSample(
                lat=float(payload["lat"]),
                lng=float(payload["lng"]),
                accuracy_m=float(payload.get("accuracy", 10.0)),
                timestamp_ms=int(payload.get("timestamp_ms", time.time() * 1000)),
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "Could not read location file %s: %s",
                path,
                exc,
                extra={"event": "location_feed", "status": "unreadable"},
            )
            return None

        previous = location.guard.state.status
        state = location.update(sample)
        if state.status is not previous:
            self.stdout.write(f"Location: {state.status.value} - {state.message}")
        return state

    def _report(self, outcome: ScanOutcome) -> None:
        if outcome.kind is ScanOutcomeKind.DECISION:
            name = outcome.match.name or outcome.match.worker_id
            self.stdout.write(self.style.SUCCESS(f"{name}: {outcome.message}"))
        elif outcome.kind is ScanOutcomeKind.ERROR:
            self.stderr.write(outcome.message)
        elif outcome.kind in (ScanOutcomeKind.BLOCKED, ScanOutcomeKind.POOR_QUALITY):
            self.stdout.write(self.style.WARNING(outcome.message))
        elif outcome.kind in (ScanOutcomeKind.LIVENESS_PENDING, ScanOutcomeKind.NO_MATCH):
            self.stdout.write(outcome.message)
