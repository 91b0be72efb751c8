"""Tests for the Celery background jobs."""

from __future__ import annotations

import pytest

from faceguard.models import SpoofIncident
from faceguard.tasks import report_spoof_incident

pytestmark = pytest.mark.django_db


def test_report_spoof_incident_persists_row():
    result = report_spoof_incident.delay(
        user_id="op-1",
        latitude=23.0,
        longitude=69.0,
        accuracy_m=0.0,
        confidence=0.7,
        reason="Suspiciously perfect accuracy",
    ).get(timeout=5)

    incident = SpoofIncident.objects.get(pk=result["incident_id"])
    assert incident.user_id == "op-1"
    assert incident.confidence == 0.7
    assert incident.reason == "Suspiciously perfect accuracy"


def test_report_spoof_incident_without_user():
    result = report_spoof_incident.apply(
        kwargs={
            "user_id": None,
            "latitude": 1.0,
            "longitude": 2.0,
            "accuracy_m": 5.0,
            "confidence": 0.95,
        }
    ).get()

    assert SpoofIncident.objects.get(pk=result["incident_id"]).user_id == ""
