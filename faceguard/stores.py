"""Persistence adapters between the faceguard core and the Django ORM.

The core talks to the protocols below; the ``Django*`` classes are the
production implementations. Database failures surface as
:class:`~faceguard.exceptions.StoreWriteError` so callers can retry or report
them instead of assuming success.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from django.db import DatabaseError, IntegrityError, transaction
from django.utils import timezone

from .crypto import DescriptorCipher, InvalidToken
from .decision import AttendanceRecord
from .descriptors import DESCRIPTOR_SIZE
from .exceptions import DescriptorSizeError, StoreWriteError
from .geofence import CircleBoundary, GeoPoint, PolygonBoundary, Site, wkt_to_polygon
from .matcher import Candidate
from .models import AccessRequest, AttendanceLog, Site as SiteModel, Worker

logger = logging.getLogger(__name__)


class WorkerStore(Protocol):
    def list_active_workers_with_descriptors(self) -> List[Candidate]: ...

    def write_descriptor(self, worker_id: Any, descriptor: Sequence[float]) -> None: ...

    def create_worker(
        self,
        *,
        name: str,
        descriptor: Sequence[float],
        base_rate: Any = 500,
        photo: Optional[bytes] = None,
        category: str = "",
        phone: str = "",
        site_id: Any = None,
        consent_date: Optional[dt.datetime] = None,
    ) -> Any: ...

    def count_active(self) -> int: ...


class AttendanceStore(Protocol):
    def get_today_record(self, worker_id: Any, day: dt.date) -> Optional[AttendanceRecord]: ...

    def upsert_check_in(
        self, worker_id: Any, day: dt.date, when: dt.datetime, *, marked_by: str = "scanner"
    ) -> AttendanceRecord: ...

    def set_check_out(
        self, worker_id: Any, day: dt.date, when: dt.datetime, *, marked_by: str = "scanner"
    ) -> AttendanceRecord: ...

    def records_for_day(self, day: dt.date) -> Dict[Any, AttendanceRecord]: ...


class SiteStore(Protocol):
    def list_active_sites(self) -> List[Site]: ...


class AccessOverrideStore(Protocol):
    def has_active_override(self, user_id: Any, site_id: Any, now: dt.datetime) -> bool: ...

    def request_access(
        self, user_id: Any, site_id: Any, lat: Optional[float], lng: Optional[float]
    ) -> Any: ...


def _record_from_log(log: AttendanceLog) -> AttendanceRecord:
    return AttendanceRecord(
        check_in_time=log.check_in_time,
        check_out_time=log.check_out_time,
        status=log.status,
    )


class DjangoWorkerStore:
    def __init__(
        self, cipher: Optional[DescriptorCipher] = None, descriptor_size: int = DESCRIPTOR_SIZE
    ) -> None:
        self.cipher = cipher or DescriptorCipher()
        self.descriptor_size = descriptor_size

    def list_active_workers_with_descriptors(self) -> List[Candidate]:
        """Active workers with a readable descriptor; unreadable rows are skipped."""

        candidates: List[Candidate] = []
        rows = (
            Worker.objects.filter(is_active=True, face_descriptor__isnull=False)
            .order_by("id")
            .values_list("id", "name", "face_descriptor")
        )
        for worker_id, name, token in rows:
            if not token:
                continue
            try:
                descriptor = self.cipher.decrypt_descriptor(bytes(token), self.descriptor_size)
            except (InvalidToken, DescriptorSizeError):
                logger.warning(
                    "Skipping worker %s with unreadable face descriptor",
                    worker_id,
                    extra={"event": "worker_descriptor", "status": "unreadable"},
                )
                continue
            candidates.append(Candidate(worker_id=worker_id, descriptor=descriptor, name=name))
        return candidates

    def write_descriptor(self, worker_id: Any, descriptor: Sequence[float]) -> None:
        token = self.cipher.encrypt_descriptor(descriptor, self.descriptor_size)
        try:
            updated = Worker.objects.filter(pk=worker_id).update(face_descriptor=token)
        except DatabaseError as exc:
            raise StoreWriteError(f"Could not store descriptor for worker {worker_id}") from exc
        if not updated:
            raise StoreWriteError(f"Worker {worker_id} does not exist")

    def create_worker(
        self,
        *,
        name: str,
        descriptor: Sequence[float],
        base_rate: Any = 500,
        photo: Optional[bytes] = None,
        category: str = "",
        phone: str = "",
        site_id: Any = None,
        consent_date: Optional[dt.datetime] = None,
    ) -> Any:
        token = self.cipher.encrypt_descriptor(descriptor, self.descriptor_size)
        try:
            worker = Worker.objects.create(
                name=name,
                base_rate=base_rate,
                category=category,
                phone=phone,
                site_id=site_id,
                photo=photo,
                face_descriptor=token,
                consent_date=consent_date or timezone.now(),
            )
        except DatabaseError as exc:
            raise StoreWriteError(f"Could not create worker {name!r}") from exc
        return worker.pk

    def count_active(self) -> int:
        return Worker.objects.filter(is_active=True).count()


class DjangoAttendanceStore:
    def get_today_record(self, worker_id: Any, day: dt.date) -> Optional[AttendanceRecord]:
        log = AttendanceLog.objects.filter(worker_id=worker_id, date=day).first()
        return _record_from_log(log) if log else None

    def upsert_check_in(
        self, worker_id: Any, day: dt.date, when: dt.datetime, *, marked_by: str = "scanner"
    ) -> AttendanceRecord:
        """Create today's row or fill a missing check-in; never duplicates a row.

        An existing check-in time is kept, so a concurrent second check-in for
        the same worker and day is a no-op.
        """

        try:
            with transaction.atomic():
                log, created = AttendanceLog.objects.select_for_update().get_or_create(
                    worker_id=worker_id,
                    date=day,
                    defaults={
                        "check_in_time": when,
                        "status": AttendanceLog.Status.PRESENT,
                        "marked_by": marked_by,
                    },
                )
                if not created and log.check_in_time is None:
                    log.check_in_time = when
                    log.status = AttendanceLog.Status.PRESENT
                    log.marked_by = marked_by
                    log.save(update_fields=["check_in_time", "status", "marked_by"])
        except IntegrityError:
            # Lost the insert race; the winner's row is the check-in.
            log = AttendanceLog.objects.filter(worker_id=worker_id, date=day).first()
            if log is None:
                raise StoreWriteError(f"Check-in for worker {worker_id} could not be stored")
        except DatabaseError as exc:
            raise StoreWriteError(f"Check-in for worker {worker_id} could not be stored") from exc
        return _record_from_log(log)

    def set_check_out(
        self, worker_id: Any, day: dt.date, when: dt.datetime, *, marked_by: str = "scanner"
    ) -> AttendanceRecord:
        try:
            with transaction.atomic():
                log = (
                    AttendanceLog.objects.select_for_update()
                    .filter(worker_id=worker_id, date=day)
                    .first()
                )
                if log is None or log.check_in_time is None:
                    raise StoreWriteError(f"Worker {worker_id} has no check-in on {day}")
                if log.check_out_time is None:
                    log.check_out_time = when
                    log.marked_by = marked_by
                    log.save(update_fields=["check_out_time", "marked_by"])
        except DatabaseError as exc:
            raise StoreWriteError(f"Check-out for worker {worker_id} could not be stored") from exc
        return _record_from_log(log)

    def records_for_day(self, day: dt.date) -> Dict[Any, AttendanceRecord]:
        return {
            log.worker_id: _record_from_log(log)
            for log in AttendanceLog.objects.filter(date=day, worker__is_active=True)
        }


def site_from_model(site: SiteModel) -> Site:
    """Build a boundary; an unparsable polygon stays a polygon and so fails closed."""

    if site.polygon_wkt:
        ring = wkt_to_polygon(site.polygon_wkt) or []
        return Site(id=site.pk, name=site.name, boundary=PolygonBoundary.from_ring(ring))
    return Site(
        id=site.pk,
        name=site.name,
        boundary=CircleBoundary(
            center=GeoPoint(lat=site.latitude, lng=site.longitude),
            radius_m=site.radius_meters,
        ),
    )


class DjangoSiteStore:
    def list_active_sites(self) -> List[Site]:
        return [site_from_model(site) for site in SiteModel.objects.filter(is_active=True)]


class DjangoAccessOverrideStore:
    def has_active_override(self, user_id: Any, site_id: Any, now: dt.datetime) -> bool:
        requests = AccessRequest.objects.filter(
            user_id=str(user_id),
            status=AccessRequest.Status.APPROVED,
            expires_at__gt=now,
        )
        if site_id is not None:
            requests = requests.filter(site_id=site_id)
        return requests.exists()

    def request_access(
        self, user_id: Any, site_id: Any, lat: Optional[float], lng: Optional[float]
    ) -> Any:
        try:
            request = AccessRequest.objects.create(
                user_id=str(user_id),
                site_id=site_id,
                current_lat=lat,
                current_lng=lng,
                status=AccessRequest.Status.PENDING,
            )
        except DatabaseError as exc:
            raise StoreWriteError("Access request could not be stored") from exc
        logger.info(
            "Remote access requested",
            extra={"event": "access_request", "status": "pending", "site_id": site_id},
        )
        return request.pk

    def approve(
        self,
        request_id: Any,
        approved_by: str,
        duration: dt.timedelta,
        now: Optional[dt.datetime] = None,
    ) -> None:
        now = now or timezone.now()
        updated = AccessRequest.objects.filter(
            pk=request_id, status=AccessRequest.Status.PENDING
        ).update(
            status=AccessRequest.Status.APPROVED,
            approved_by=approved_by,
            expires_at=now + duration,
        )
        if not updated:
            raise StoreWriteError(f"Access request {request_id} is not pending")

    def deny(self, request_id: Any, approved_by: str) -> None:
        AccessRequest.objects.filter(pk=request_id, status=AccessRequest.Status.PENDING).update(
            status=AccessRequest.Status.DENIED, approved_by=approved_by
        )


__all__ = [
    "AccessOverrideStore",
    "AttendanceStore",
    "DjangoAccessOverrideStore",
    "DjangoAttendanceStore",
    "DjangoSiteStore",
    "DjangoWorkerStore",
    "SiteStore",
    "WorkerStore",
    "site_from_model",
]
