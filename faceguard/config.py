"""
Configuration getters for the faceguard core.

Modules read Django settings only through these helpers so the defaults live in
one place and tests can override them with ``override_settings``.
"""

from __future__ import annotations

from typing import Any, Dict

from django.conf import settings

DEFAULT_SITE: Dict[str, Any] = {
    "name": "Main Site",
    "lat": 23.481389,
    "lng": 69.501389,
    "radius": 572.0,
}


def get_match_threshold() -> float:
    """Return the distance threshold for attendance matches."""
    return float(getattr(settings, "FACEGUARD_MATCH_THRESHOLD", 0.55))


def get_duplicate_threshold() -> float:
    """Return the stricter threshold used to reject duplicate enrollments."""
    return float(getattr(settings, "FACEGUARD_DUPLICATE_THRESHOLD", 0.5))


def get_descriptor_size() -> int:
    return int(getattr(settings, "FACEGUARD_DESCRIPTOR_SIZE", 128))


def get_model_name() -> str:
    """Return the DeepFace recognition model name."""
    return getattr(settings, "FACEGUARD_MODEL_NAME", "Facenet")


def get_detector_backend() -> str:
    """Return the DeepFace face detector backend."""
    return getattr(settings, "FACEGUARD_DETECTOR_BACKEND", "retinaface")


def is_quality_gate_enabled() -> bool:
    return bool(getattr(settings, "FACEGUARD_QUALITY_GATE_ENABLED", True))


def is_liveness_required() -> bool:
    """Return whether a liveness challenge must pass before a scan is accepted."""
    return bool(getattr(settings, "FACEGUARD_REQUIRE_LIVENESS", False))


def get_liveness_challenge_seconds() -> float:
    return float(getattr(settings, "FACEGUARD_LIVENESS_CHALLENGE_SECONDS", 8.0))


def get_scan_interval() -> float:
    return float(getattr(settings, "FACEGUARD_SCAN_INTERVAL_SECONDS", 0.5))


def get_face_box_interval() -> float:
    return float(getattr(settings, "FACEGUARD_FACE_BOX_INTERVAL_SECONDS", 0.4))


def get_enrollment_timeout() -> float:
    return float(getattr(settings, "FACEGUARD_ENROLLMENT_TIMEOUT_SECONDS", 60.0))


def is_enrollment_fast_path() -> bool:
    """Return whether enrollment may finish after the centre and left poses."""
    return bool(getattr(settings, "FACEGUARD_ENROLLMENT_FAST_PATH", False))


def get_camera_source() -> int:
    return int(getattr(settings, "FACEGUARD_CAMERA_SOURCE", 0))


def get_camera_warmup() -> float:
    return float(getattr(settings, "FACEGUARD_CAMERA_WARMUP_SECONDS", 2.0))


def get_cooldown_seconds() -> float:
    return float(getattr(settings, "FACEGUARD_COOLDOWN_SECONDS", 10.0))


def get_full_shift_hours() -> float:
    return float(getattr(settings, "FACEGUARD_FULL_SHIFT_HOURS", 4.0))


def get_min_checkout_hours() -> float:
    return float(getattr(settings, "FACEGUARD_MIN_CHECKOUT_HOURS", 1.0))


def get_early_checkout_confirm_seconds() -> float:
    return float(getattr(settings, "FACEGUARD_EARLY_CHECKOUT_CONFIRM_SECONDS", 30.0))


def get_store_write_attempts() -> int:
    return max(1, int(getattr(settings, "FACEGUARD_STORE_WRITE_ATTEMPTS", 3)))


def is_geofence_enabled() -> bool:
    return bool(getattr(settings, "FACEGUARD_GEOFENCE_ENABLED", True))


def get_default_site() -> Dict[str, Any]:
    """Return the fallback site used when no active site is configured."""
    return dict(getattr(settings, "FACEGUARD_DEFAULT_SITE", DEFAULT_SITE))


def get_gps_max_accuracy() -> float:
    return float(getattr(settings, "FACEGUARD_GPS_MAX_ACCURACY_METERS", 100.0))


def get_gps_perfect_accuracy() -> float:
    return float(getattr(settings, "FACEGUARD_GPS_PERFECT_ACCURACY_METERS", 3.0))


def get_gps_max_speed_kmh() -> float:
    return float(getattr(settings, "FACEGUARD_GPS_MAX_SPEED_KMH", 150.0))
