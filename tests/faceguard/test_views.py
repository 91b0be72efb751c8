"""Tests for the staff-only operational endpoints."""

from __future__ import annotations

import datetime as dt

import pytest
from django.urls import reverse
from django.utils import timezone

from faceguard import monitoring
from faceguard.models import AttendanceLog, Worker

pytestmark = pytest.mark.django_db


def test_health_requires_staff(client):
    response = client.get(reverse("faceguard-health"))

    assert response.status_code == 302
    assert "/admin/login/" in response["Location"]


def test_health_returns_snapshot(admin_client):
    monitoring.record_guard_status("inside")

    response = admin_client.get(reverse("faceguard-health"))

    assert response.status_code == 200
    payload = response.json()
    assert payload["guard_status"] == "inside"
    assert set(payload) >= {"camera", "models", "stages", "alerts", "metrics"}


def test_metrics_endpoint_exports_registry(admin_client):
    monitoring.record_scan_outcome("matched")

    response = admin_client.get(reverse("faceguard-metrics"))

    assert response.status_code == 200
    assert response["Content-Type"] == monitoring.prometheus_content_type()
    assert b"faceguard_scan_outcome_total" in response.content


def test_health_rejects_post(admin_client):
    assert admin_client.post(reverse("faceguard-health")).status_code == 405


def test_daily_summary_counts_workers(admin_client):
    day = dt.date(2026, 3, 2)
    morning = dt.datetime(2026, 3, 2, 8, 0, tzinfo=dt.timezone.utc)
    present = Worker.objects.create(name="Asha")
    left = Worker.objects.create(name="Ravi")
    Worker.objects.create(name="Meena")
    Worker.objects.create(name="Retired", is_active=False)
    AttendanceLog.objects.create(worker=present, date=day, check_in_time=morning)
    AttendanceLog.objects.create(
        worker=left,
        date=day,
        check_in_time=morning,
        check_out_time=morning + dt.timedelta(hours=8),
    )

    response = admin_client.get(reverse("faceguard-daily-summary"), {"date": "2026-03-02"})

    assert response.status_code == 200
    assert response.json() == {
        "date": "2026-03-02",
        "total": 3,
        "present": 1,
        "left": 1,
        "absent": 1,
    }


def test_daily_summary_defaults_to_today(admin_client):
    response = admin_client.get(reverse("faceguard-daily-summary"))

    assert response.status_code == 200
    assert response.json()["date"] == timezone.localdate().isoformat()


def test_daily_summary_rejects_bad_date(admin_client):
    response = admin_client.get(reverse("faceguard-daily-summary"), {"date": "02/03/2026"})

    assert response.status_code == 400
    assert "error" in response.json()
