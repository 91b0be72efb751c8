"""Database models for workers, sites and daily attendance."""

from __future__ import annotations

import logging

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

logger = logging.getLogger(__name__)


class Site(models.Model):
    """A work site; a polygon boundary takes precedence over the circle."""

    name = models.CharField(max_length=200)
    latitude = models.FloatField()
    longitude = models.FloatField()
    radius_meters = models.FloatField(default=200.0, validators=[MinValueValidator(1.0)])
    polygon_wkt = models.TextField(
        blank=True,
        help_text="Optional boundary as POLYGON((lng lat, ...)); overrides the radius",
    )
    address = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name


class Worker(models.Model):
    name = models.CharField(max_length=200)
    base_rate = models.DecimalField(max_digits=10, decimal_places=2, default=500)
    category = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    site = models.ForeignKey(
        Site, null=True, blank=True, on_delete=models.SET_NULL, related_name="workers"
    )
    photo = models.BinaryField(null=True, blank=True, help_text="JPEG profile photo")
    face_descriptor = models.BinaryField(
        null=True, blank=True, help_text="Fernet-encrypted face descriptor"
    )
    is_active = models.BooleanField(default=True)
    consent_date = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name", "id"]
        indexes = [models.Index(fields=["is_active"], name="faceguard_worker_active_idx")]

    def __str__(self) -> str:
        return self.name

    @property
    def has_face(self) -> bool:
        return bool(self.face_descriptor)


class AttendanceLog(models.Model):
    """One row per worker per day."""

    class Status(models.TextChoices):
        PRESENT = "present", "Present"
        ABSENT = "absent", "Absent"
        HALF_DAY = "half-day", "Half day"

    worker = models.ForeignKey(Worker, on_delete=models.CASCADE, related_name="attendance_logs")
    date = models.DateField()
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PRESENT)
    check_in_time = models.DateTimeField(null=True, blank=True)
    check_out_time = models.DateTimeField(null=True, blank=True)
    gps_lat = models.FloatField(null=True, blank=True)
    gps_lng = models.FloatField(null=True, blank=True)
    gps_accuracy = models.FloatField(null=True, blank=True)
    is_flagged = models.BooleanField(default=False)
    marked_by = models.CharField(max_length=64, blank=True, default="scanner")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-date", "worker_id"]
        constraints = [
            models.UniqueConstraint(fields=["worker", "date"], name="faceguard_unique_worker_day")
        ]

    def __str__(self) -> str:
        return f"{self.worker_id} @ {self.date}"


class AccessRequest(models.Model):
    """Remote check-in exception requested from outside the geofence."""

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        DENIED = "DENIED", "Denied"

    user_id = models.CharField(max_length=64)
    site = models.ForeignKey(
        Site, null=True, blank=True, on_delete=models.CASCADE, related_name="access_requests"
    )
    current_lat = models.FloatField(null=True, blank=True)
    current_lng = models.FloatField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    approved_by = models.CharField(max_length=64, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.user_id} -> {self.site_id} ({self.status})"

    def is_active(self, now=None) -> bool:
        """Approved and not yet expired."""

        now = now or timezone.now()
        return (
            self.status == self.Status.APPROVED
            and self.expires_at is not None
            and now < self.expires_at
        )


class SpoofIncident(models.Model):
    """A location sample the guard rejected as mocked."""

    user_id = models.CharField(max_length=64, blank=True)
    latitude = models.FloatField()
    longitude = models.FloatField()
    accuracy_m = models.FloatField()
    confidence = models.FloatField()
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Spoof {self.confidence:.2f} @ {self.created_at:%Y-%m-%d %H:%M}"
