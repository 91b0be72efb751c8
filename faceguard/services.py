"""Application services combining the decision engine, matcher and stores."""

from __future__ import annotations

import datetime as dt
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, TypeVar

import cv2
import numpy as np
from django.utils import timezone

from . import monitoring
from .config import get_duplicate_threshold, get_match_threshold, get_store_write_attempts
from .decision import (
    AttendanceDecisionEngine,
    AttendanceRecord,
    AttendanceState,
    Decision,
    DecisionAction,
    state_of,
)
from .enrollment import EnrollmentResult, find_duplicate
from .exceptions import DuplicateFaceError, StoreWriteError
from .geofence import Site
from .location_guard import GuardState, LocationGuard
from .matcher import Candidate, MatchResult, find_best_match
from .spoof import LocationSample, SpoofCheckResult
from .stores import AccessOverrideStore, AttendanceStore, SiteStore, WorkerStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DailySummary:
    day: dt.date
    total: int
    present: int
    left: int
    absent: int


@dataclass(frozen=True)
class RegistrationResult:
    worker_id: Any
    name: str
    decision: Optional[Decision] = None


def encode_photo(image: Optional[np.ndarray], quality: int = 90) -> Optional[bytes]:
    """JPEG-encode a BGR crop for storage, ``None`` when there is nothing to encode."""

    if image is None or getattr(image, "size", 0) == 0:
        return None
    ok, buffer = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        logger.warning("Failed to encode profile photo")
        return None
    return buffer.tobytes()


class AttendanceService:
    """Apply decisions to the attendance store, reporting only confirmed writes."""

    def __init__(
        self,
        workers: WorkerStore,
        attendance: AttendanceStore,
        engine: Optional[AttendanceDecisionEngine] = None,
        *,
        write_attempts: Optional[int] = None,
        retry_delay: float = 0.1,
        match_threshold: Optional[float] = None,
    ) -> None:
        self.workers = workers
        self.attendance = attendance
        self.engine = engine or AttendanceDecisionEngine()
        if write_attempts is None:
            write_attempts = get_store_write_attempts()
        self.write_attempts = max(1, int(write_attempts))
        self.retry_delay = max(0.0, retry_delay)
        self.match_threshold = (
            get_match_threshold() if match_threshold is None else match_threshold
        )
        self._candidates: Optional[List[Candidate]] = None

    def candidates(self, refresh: bool = False) -> List[Candidate]:
        """Enrolled workers, cached until ``refresh`` or a new registration."""

        if refresh or self._candidates is None:
            self._candidates = self.workers.list_active_workers_with_descriptors()
        return self._candidates

    def invalidate_candidates(self) -> None:
        self._candidates = None

    def match(self, descriptor: Iterable[float]) -> Optional[MatchResult]:
        return find_best_match(descriptor, self.candidates(), self.match_threshold)

    def _write(self, operation: str, worker_id: Any, action: Callable[[], T]) -> T:
        last_error: Optional[StoreWriteError] = None
        for attempt in range(1, self.write_attempts + 1):
            try:
                return action()
            except StoreWriteError as exc:
                last_error = exc
                logger.warning(
                    "Attendance %s for worker %s failed (attempt %d/%d): %s",
                    operation,
                    worker_id,
                    attempt,
                    self.write_attempts,
                    exc,
                    extra={"event": "store_write", "status": "retry", "operation": operation},
                )
                if attempt < self.write_attempts and self.retry_delay:
                    time.sleep(self.retry_delay * attempt)

        monitoring.record_store_write_failure(operation, str(last_error))
        logger.error(
            "Attendance %s for worker %s failed after %d attempts",
            operation,
            worker_id,
            self.write_attempts,
            extra={"event": "store_write", "status": "failure", "operation": operation},
        )
        raise StoreWriteError(
            f"Could not record {operation} for worker {worker_id}"
        ) from last_error

    def process_match(self, match: MatchResult, now: Optional[dt.datetime] = None) -> Decision:
        """Decide and persist what a recognised scan means for the worker.

        Raises:
            StoreWriteError: the check-in/out could not be written; the engine
                forgets the decision so the next scan retries it.
        """

        now = now or timezone.now()
        day = timezone.localdate(now)
        worker_id = match.worker_id
        record = self.attendance.get_today_record(worker_id, day)
        decision = self.engine.decide(worker_id, record, now)

        try:
            if decision.action is DecisionAction.CHECK_IN:
                self._write(
                    "check_in",
                    worker_id,
                    lambda: self.attendance.upsert_check_in(worker_id, day, now),
                )
            elif decision.action is DecisionAction.CHECK_OUT:
                self._write(
                    "check_out",
                    worker_id,
                    lambda: self.attendance.set_check_out(worker_id, day, now),
                )
        except StoreWriteError:
            self.engine.forget(worker_id)
            raise
        return decision

    def manual_check_in(
        self, worker_id: Any, now: Optional[dt.datetime] = None, *, marked_by: str = "manual"
    ) -> AttendanceRecord:
        now = now or timezone.now()
        day = timezone.localdate(now)
        return self._write(
            "check_in",
            worker_id,
            lambda: self.attendance.upsert_check_in(worker_id, day, now, marked_by=marked_by),
        )

    def manual_check_out(
        self, worker_id: Any, now: Optional[dt.datetime] = None, *, marked_by: str = "manual"
    ) -> AttendanceRecord:
        now = now or timezone.now()
        day = timezone.localdate(now)
        return self._write(
            "check_out",
            worker_id,
            lambda: self.attendance.set_check_out(worker_id, day, now, marked_by=marked_by),
        )

    def daily_summary(self, day: Optional[dt.date] = None) -> DailySummary:
        day = day or timezone.localdate()
        records = self.attendance.records_for_day(day)
        states = [state_of(record) for record in records.values()]
        present = sum(1 for state in states if state is AttendanceState.PRESENT)
        left = sum(1 for state in states if state is AttendanceState.LEFT)
        total = self.workers.count_active()
        return DailySummary(
            day=day,
            total=total,
            present=present,
            left=left,
            absent=max(0, total - present - left),
        )


class EnrollmentService:
    """Register a new worker from a completed enrollment."""

    def __init__(
        self,
        workers: WorkerStore,
        attendance_service: Optional[AttendanceService] = None,
        *,
        duplicate_threshold: Optional[float] = None,
    ) -> None:
        self.workers = workers
        self.attendance_service = attendance_service
        self.duplicate_threshold = (
            get_duplicate_threshold() if duplicate_threshold is None else duplicate_threshold
        )

    def register_worker(
        self,
        result: EnrollmentResult,
        name: str,
        base_rate: Any = 500,
        *,
        category: str = "",
        phone: str = "",
        site_id: Any = None,
        check_in: bool = True,
        now: Optional[dt.datetime] = None,
    ) -> RegistrationResult:
        """Store the worker and, optionally, check them in straight away.

        Raises:
            DuplicateFaceError: the face is already enrolled; nothing is stored.
            StoreWriteError: the worker row could not be created.
        """

        name = name.strip()
        if not name:
            raise ValueError("Worker name is required")

        existing = find_duplicate(
            result.descriptor,
            self.workers.list_active_workers_with_descriptors(),
            self.duplicate_threshold,
        )
        if existing is not None:
            monitoring.record_enrollment("duplicate")
            logger.warning(
                "Rejected duplicate enrollment of %s",
                existing.worker_id,
                extra={"event": "enrollment", "status": "duplicate", "distance": existing.distance},
            )
            raise DuplicateFaceError(existing.worker_id, existing.name, existing.distance)

        worker_id = self.workers.create_worker(
            name=name,
            descriptor=result.descriptor,
            base_rate=base_rate,
            photo=encode_photo(result.photo),
            category=category,
            phone=phone,
            site_id=site_id,
        )
        monitoring.record_enrollment("registered")
        logger.info(
            "Registered worker %s from %d samples",
            worker_id,
            result.samples_used,
            extra={"event": "enrollment", "status": "registered"},
        )

        decision = None
        if self.attendance_service is not None:
            self.attendance_service.invalidate_candidates()
            if check_in:
                decision = self.attendance_service.process_match(
                    MatchResult(worker_id=worker_id, distance=0.0, similarity=1.0, name=name),
                    now,
                )
        return RegistrationResult(worker_id=worker_id, name=name, decision=decision)


class LocationService:
    """Feed position readings into a :class:`LocationGuard` for one operator."""

    def __init__(
        self,
        guard: LocationGuard,
        sites: Optional[SiteStore] = None,
        overrides: Optional[AccessOverrideStore] = None,
        *,
        user_id: Any = None,
    ) -> None:
        self.guard = guard
        self.sites = sites
        self.overrides = overrides
        self.user_id = user_id

    @classmethod
    def create(
        cls,
        sites: SiteStore,
        overrides: Optional[AccessOverrideStore] = None,
        *,
        user_id: Any = None,
        report_spoofs: bool = True,
        **guard_options: Any,
    ) -> "LocationService":
        on_spoof = None
        if report_spoofs:

            def on_spoof(result: SpoofCheckResult, sample: LocationSample) -> None:
                from .tasks import report_spoof_incident

                report_spoof_incident.delay(
                    user_id=None if user_id is None else str(user_id),
                    latitude=sample.lat,
                    longitude=sample.lng,
                    accuracy_m=sample.accuracy_m,
                    confidence=result.confidence,
                    reason=result.reason or "",
                )

        guard = LocationGuard(sites.list_active_sites(), on_spoof=on_spoof, **guard_options)
        return cls(guard, sites, overrides, user_id=user_id)

    def _override_active(self, now: dt.datetime) -> bool:
        if self.overrides is None or self.user_id is None:
            return False
        site_ids = [site.id for site in self.guard.sites if site.id is not None]
        if not site_ids:
            return self.overrides.has_active_override(self.user_id, None, now)
        return any(
            self.overrides.has_active_override(self.user_id, site_id, now) for site_id in site_ids
        )

    def update(self, sample: LocationSample, now: Optional[dt.datetime] = None) -> GuardState:
        now = now or timezone.now()
        return self.guard.evaluate(sample, override_active=self._override_active(now))

    def refresh_sites(self) -> GuardState:
        if self.sites is None:
            return self.guard.state
        active: List[Site] = self.sites.list_active_sites()
        return self.guard.update_sites(active)

    def request_access(self, lat: Optional[float] = None, lng: Optional[float] = None) -> Any:
        """File a remote-access request for the first configured site."""

        if self.overrides is None or self.user_id is None:
            raise StoreWriteError("Remote access requests need a user and an override store")
        state = self.guard.state
        if lat is None and state.sample is not None:
            lat, lng = state.sample.lat, state.sample.lng
        site_id = next((site.id for site in self.guard.sites if site.id is not None), None)
        return self.overrides.request_access(self.user_id, site_id, lat, lng)


__all__ = [
    "AttendanceService",
    "DailySummary",
    "EnrollmentService",
    "LocationService",
    "RegistrationResult",
    "encode_photo",
]
