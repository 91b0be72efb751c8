"""Management command that enrolls a new worker from the local camera."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from django.core.management.base import BaseCommand, CommandError

from faceguard.enrollment import EnrollmentSession
from faceguard.exceptions import (
    DuplicateFaceError,
    EnrollmentError,
    ModelsUnavailableError,
    StoreWriteError,
)
from faceguard.scanner import EnrollmentLoop
from faceguard.services import AttendanceService, EnrollmentService
from faceguard.stores import DjangoAttendanceStore, DjangoWorkerStore


class Command(BaseCommand):
    help = "Capture centre, left and right face samples and register a new worker"

    def add_arguments(self, parser):
        parser.add_argument("name", type=str, help="Worker display name")
        parser.add_argument(
            "--rate",
            type=str,
            default="500",
            help="Daily base rate (default: 500)",
        )
        parser.add_argument("--category", type=str, default="", help="Trade or role")
        parser.add_argument("--phone", type=str, default="", help="Contact number")
        parser.add_argument(
            "--site-id",
            type=int,
            default=None,
            help="Primary site for the worker",
        )
        parser.add_argument(
            "--no-check-in",
            action="store_true",
            help="Register without checking the worker in for today",
        )
        parser.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Seconds allowed to capture every pose (default: FACEGUARD_ENROLLMENT_TIMEOUT_SECONDS)",
        )
        parser.add_argument(
            "--fast-path",
            action="store_true",
            help="Finish after the centre and left captures",
        )

    def handle(self, *args, **options):
        from faceguard.extractor import DescriptorExtractor, load_face_models
        from faceguard.webcam_manager import get_webcam_manager

        name = options["name"].strip()
        if not name:
            raise CommandError("Worker name is required")
        try:
            rate = Decimal(options["rate"])
        except InvalidOperation as exc:
            raise CommandError(f"Invalid rate: {options['rate']}") from exc

        try:
            handle = load_face_models()
        except ModelsUnavailableError as exc:
            raise CommandError(str(exc)) from exc

        session = EnrollmentSession(
            timeout=options["timeout"],
            fast_path=True if options["fast_path"] else None,
        )
        try:
            source = get_webcam_manager().frame_consumer()
        except Exception as exc:
            raise CommandError(f"Could not open the camera: {exc}") from exc

        self.stdout.write(session.prompt)
        loop = EnrollmentLoop(
            source,
            DescriptorExtractor(handle),
            session,
            on_progress=self._progress,
        )
        try:
            result = loop.run()
        except KeyboardInterrupt:
            loop.cancel()
            raise CommandError("Enrollment cancelled")
        except (EnrollmentError, ModelsUnavailableError) as exc:
            raise CommandError(str(exc)) from exc

        workers = DjangoWorkerStore()
        service = EnrollmentService(
            workers, AttendanceService(workers, DjangoAttendanceStore())
        )
        try:
            registration = service.register_worker(
                result,
                name,
                rate,
                category=options["category"],
                phone=options["phone"],
                site_id=options["site_id"],
                check_in=not options["no_check_in"],
            )
        except DuplicateFaceError as exc:
            raise CommandError(str(exc)) from exc
        except StoreWriteError as exc:
            raise CommandError(f"Could not save worker: {exc}") from exc

        self.stdout.write(
            self.style.SUCCESS(f"Registered {registration.name} (id {registration.worker_id})")
        )
        if registration.decision is not None:
            self.stdout.write(registration.decision.message)

    def _progress(self, session: EnrollmentSession, captured: bool) -> None:
        if captured:
            self.stdout.write(f"Captured {len(session.samples)}/{session.target_captures}")
            if not session.is_complete:
                self.stdout.write(session.prompt)
