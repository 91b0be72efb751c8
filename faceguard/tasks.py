"""Background jobs for the faceguard app."""

from __future__ import annotations

import logging
from typing import Any, Optional

from celery import shared_task
from django.db import DatabaseError

from .models import SpoofIncident

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name="faceguard.report_spoof_incident",
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    max_retries=3,
)
def report_spoof_incident(
    self,
    *,
    user_id: Optional[str],
    latitude: float,
    longitude: float,
    accuracy_m: float,
    confidence: float,
    reason: str = "",
) -> dict[str, Any]:
    """Persist a spoofed location sample for later review."""

    incident = SpoofIncident.objects.create(
        user_id=user_id or "",
        latitude=latitude,
        longitude=longitude,
        accuracy_m=accuracy_m,
        confidence=confidence,
        reason=reason,
    )
    logger.warning(
        "Recorded GPS spoof incident %s",
        incident.pk,
        extra={"event": "gps_spoof", "status": "recorded", "confidence": confidence},
    )
    return {"incident_id": incident.pk, "confidence": confidence}


__all__ = ["report_spoof_incident"]
