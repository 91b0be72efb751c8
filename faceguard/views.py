"""Operational endpoints: health snapshot, Prometheus metrics and today's tally."""

from __future__ import annotations

import datetime as dt

from django.contrib.admin.views.decorators import staff_member_required
from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET

from . import monitoring
from .services import AttendanceService
from .stores import DjangoAttendanceStore, DjangoWorkerStore


@staff_member_required
@require_GET
def health(request):
    """Return camera, model and location-guard health with recent alerts."""

    return JsonResponse(monitoring.get_health_snapshot())


@staff_member_required
@require_GET
def metrics(request):
    """Expose Prometheus metrics for the scanner."""

    payload = monitoring.export_metrics()
    return HttpResponse(payload, content_type=monitoring.prometheus_content_type())


@staff_member_required
@require_GET
def daily_summary(request):
    day = None
    raw_day = request.GET.get("date")
    if raw_day:
        try:
            day = dt.date.fromisoformat(raw_day)
        except ValueError:
            return JsonResponse({"error": "date must be YYYY-MM-DD"}, status=400)

    service = AttendanceService(DjangoWorkerStore(), DjangoAttendanceStore())
    summary = service.daily_summary(day)
    return JsonResponse(
        {
            "date": summary.day.isoformat(),
            "total": summary.total,
            "present": summary.present,
            "left": summary.left,
            "absent": summary.absent,
        }
    )
