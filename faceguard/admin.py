"""Admin registrations for the faceguard app."""

import datetime as dt

from django.contrib import admin, messages
from django.utils import timezone

from .models import AccessRequest, AttendanceLog, Site, SpoofIncident, Worker

REMOTE_ACCESS_WINDOW = dt.timedelta(hours=12)


@admin.register(Site)
class SiteAdmin(admin.ModelAdmin):
    list_display = ("name", "latitude", "longitude", "radius_meters", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "address")


@admin.register(Worker)
class WorkerAdmin(admin.ModelAdmin):
    """Workers are enrolled through the scanner; the face descriptor is never editable."""

    list_display = ("name", "category", "base_rate", "site", "is_active", "has_face", "created_at")
    list_filter = ("is_active", "category", "site")
    search_fields = ("name", "phone")
    exclude = ("face_descriptor", "photo")
    readonly_fields = ("consent_date", "created_at")

    @admin.display(boolean=True, description="Face enrolled")
    def has_face(self, obj):
        return obj.has_face


@admin.register(AttendanceLog)
class AttendanceLogAdmin(admin.ModelAdmin):
    list_display = ("worker", "date", "status", "check_in_time", "check_out_time", "marked_by")
    list_filter = ("date", "status", "is_flagged")
    search_fields = ("worker__name",)
    ordering = ("-date",)


@admin.register(AccessRequest)
class AccessRequestAdmin(admin.ModelAdmin):
    list_display = ("user_id", "site", "status", "approved_by", "expires_at", "created_at")
    list_filter = ("status",)
    actions = ("approve_requests", "deny_requests")

    @admin.action(description="Approve selected requests for 12 hours")
    def approve_requests(self, request, queryset):
        updated = queryset.filter(status=AccessRequest.Status.PENDING).update(
            status=AccessRequest.Status.APPROVED,
            approved_by=str(request.user.pk),
            expires_at=timezone.now() + REMOTE_ACCESS_WINDOW,
        )
        self.message_user(request, f"Approved {updated} request(s).", messages.SUCCESS)

    @admin.action(description="Deny selected requests")
    def deny_requests(self, request, queryset):
        updated = queryset.filter(status=AccessRequest.Status.PENDING).update(
            status=AccessRequest.Status.DENIED,
            approved_by=str(request.user.pk),
        )
        self.message_user(request, f"Denied {updated} request(s).", messages.WARNING)


@admin.register(SpoofIncident)
class SpoofIncidentAdmin(admin.ModelAdmin):
    list_display = ("created_at", "user_id", "confidence", "accuracy_m", "reason")
    ordering = ("-created_at",)
    readonly_fields = (
        "created_at",
        "user_id",
        "latitude",
        "longitude",
        "accuracy_m",
        "confidence",
        "reason",
    )
