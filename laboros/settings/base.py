"""
Django settings for the LaborOS FaceGuard project.

This file contains the configuration for the Django project, including database settings,
installed applications, and the face verification / geofence parameters used by the
``faceguard`` app. Values are read from environment variables so deployments can tune
thresholds without code changes.
"""

import json
import os
import sys
import warnings
from pathlib import Path
from typing import Any

from django.core.exceptions import ImproperlyConfigured

import dj_database_url
from cryptography.fernet import Fernet

# `BASE_DIR` points to the repository root (the directory containing manage.py).
BASE_DIR = Path(__file__).resolve().parent.parent.parent
LOCAL_ENV_PATH = Path(os.environ.get("LOCAL_ENV_PATH", BASE_DIR / ".env"))
DEV_KEY_CACHE_PATH = Path(
    os.environ.get("DEV_ENCRYPTION_KEY_FILE", BASE_DIR / ".dev_encryption_keys.json")
)


# --- Environment helpers ---


def _get_bool_env(var_name: str, default: bool = False) -> bool:
    """Return a boolean from an environment variable."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default
    return raw_value.lower() in {"1", "true", "yes", "on"}


def _parse_int_env(var_name: str, default: int, *, minimum: int | None = None) -> int:
    """Return an integer from the environment, enforcing an optional minimum."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = int(raw_value)
    except ValueError as exc:  # pragma: no cover - defensive programming
        raise ImproperlyConfigured(f"{var_name} must be an integer if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


def _get_float_env(
    var_name: str,
    default: float,
    *,
    minimum: float | None = None,
) -> float:
    """Return a float from the environment with optional lower bound enforcement."""

    raw_value = os.environ.get(var_name)
    if raw_value is None:
        return default

    try:
        value = float(raw_value)
    except ValueError as exc:  # pragma: no cover - defensive programming
        raise ImproperlyConfigured(f"{var_name} must be a float if provided.") from exc

    if minimum is not None and value < minimum:
        raise ImproperlyConfigured(f"{var_name} must be >= {minimum} if provided.")

    return value


# Detect if we're running tests
TESTING = "test" in sys.argv or (len(sys.argv) > 0 and "pytest" in sys.argv[0])

DEFAULT_SECRET_KEY = "a-secure-default-key-for-development-only"

# Automatically enable DEBUG mode when running tests.
DEBUG = _get_bool_env("DJANGO_DEBUG", default=not TESTING)

SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)
if SECRET_KEY == DEFAULT_SECRET_KEY and not DEBUG and not TESTING:
    raise ImproperlyConfigured(
        "DJANGO_SECRET_KEY must be set to a secure value when DJANGO_DEBUG is not enabled."
    )

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")
    if host.strip()
]


# --- Face data encryption ---


def _validate_fernet_key(key: str | bytes, setting_name: str) -> bytes:
    """Ensure the provided key material is a valid Fernet key."""

    key_bytes = key.encode() if isinstance(key, str) else key
    try:
        Fernet(key_bytes)
    except (ValueError, TypeError) as exc:  # pragma: no cover - defensive programming
        raise ImproperlyConfigured(
            f"{setting_name} must be a valid 32-byte base64-encoded Fernet key."
        ) from exc
    return key_bytes


def _read_local_env_value(var_name: str) -> str | None:
    """Return a value from a local ``.env`` file if present."""

    if not LOCAL_ENV_PATH.exists():
        return None

    try:
        for raw_line in LOCAL_ENV_PATH.read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            if key.strip() != var_name:
                continue
            return value.strip().strip("\"").strip("'")
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to read {LOCAL_ENV_PATH}: {exc}")

    return None


def _load_cached_dev_key(var_name: str) -> bytes | None:
    """Load a previously generated development key from disk."""

    if not DEV_KEY_CACHE_PATH.exists():
        return None

    try:
        cache = json.loads(DEV_KEY_CACHE_PATH.read_text())
    except (OSError, json.JSONDecodeError) as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Ignoring invalid dev key cache file: {exc}")
        return None

    cached_value = cache.get(var_name)
    if not cached_value:
        return None

    try:
        return _validate_fernet_key(cached_value, var_name)
    except ImproperlyConfigured:
        warnings.warn(f"Ignoring invalid cached {var_name}; regenerating.")
        return None


def _persist_dev_key(var_name: str, key: bytes) -> None:
    """Persist generated development keys so they survive restarts."""

    try:
        existing = (
            json.loads(DEV_KEY_CACHE_PATH.read_text()) if DEV_KEY_CACHE_PATH.exists() else {}
        )
    except (OSError, json.JSONDecodeError):  # pragma: no cover - defensive programming
        existing = {}

    existing[var_name] = key.decode()

    try:
        DEV_KEY_CACHE_PATH.write_text(json.dumps(existing, indent=2))
    except OSError as exc:  # pragma: no cover - defensive programming
        warnings.warn(f"Unable to persist dev encryption key cache: {exc}")


def _load_face_data_encryption_key() -> bytes:
    """Load the Fernet key used to encrypt stored face descriptors."""

    key = os.environ.get("FACE_DATA_ENCRYPTION_KEY")
    if not key and (DEBUG or TESTING):
        key = _read_local_env_value("FACE_DATA_ENCRYPTION_KEY")
    if key:
        return _validate_fernet_key(key, "FACE_DATA_ENCRYPTION_KEY")

    if DEBUG or TESTING:
        cached_key = _load_cached_dev_key("FACE_DATA_ENCRYPTION_KEY")
        if cached_key:
            return cached_key
        generated = Fernet.generate_key()
        _persist_dev_key("FACE_DATA_ENCRYPTION_KEY", generated)
        return generated

    raise ImproperlyConfigured(
        "FACE_DATA_ENCRYPTION_KEY environment variable must be set in production environments."
    )


FACE_DATA_ENCRYPTION_KEY = _load_face_data_encryption_key()


# --- Application Configuration ---

INSTALLED_APPS = [
    "faceguard.apps.FaceGuardConfig",
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "laboros.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "laboros.wsgi.application"


# --- Database ---

DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{BASE_DIR / 'db.sqlite3'}")
database_config: dict[str, Any] = dj_database_url.parse(
    DATABASE_URL,
    conn_max_age=_parse_int_env("DATABASE_CONN_MAX_AGE", 60, minimum=0),
)

DATABASES = {
    "default": database_config,
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# --- Internationalization ---

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.environ.get("DJANGO_TIME_ZONE", "Asia/Kolkata")
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = Path(os.environ.get("DJANGO_STATIC_ROOT", BASE_DIR / "staticfiles"))


# --- Celery ---

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
# Run tasks inline when testing so no broker is required.
CELERY_TASK_ALWAYS_EAGER = _get_bool_env("CELERY_TASK_ALWAYS_EAGER", default=TESTING)
CELERY_TASK_EAGER_PROPAGATES = TESTING


# --- Face matching ---

# Euclidean distance accepted as the same person during attendance scans.
# Lower values mean stricter matching (more false rejects).
FACEGUARD_MATCH_THRESHOLD = _get_float_env("FACEGUARD_MATCH_THRESHOLD", 0.55, minimum=0.0)
# Tighter threshold used to block registering the same face twice.
FACEGUARD_DUPLICATE_THRESHOLD = _get_float_env(
    "FACEGUARD_DUPLICATE_THRESHOLD", 0.5, minimum=0.0
)
FACEGUARD_DESCRIPTOR_SIZE = _parse_int_env("FACEGUARD_DESCRIPTOR_SIZE", 128, minimum=1)
FACEGUARD_MODEL_NAME = os.environ.get("FACEGUARD_MODEL_NAME", "Facenet")
FACEGUARD_DETECTOR_BACKEND = os.environ.get("FACEGUARD_DETECTOR_BACKEND", "retinaface")

FACEGUARD_QUALITY_GATE_ENABLED = _get_bool_env("FACEGUARD_QUALITY_GATE_ENABLED", default=True)
FACEGUARD_REQUIRE_LIVENESS = _get_bool_env("FACEGUARD_REQUIRE_LIVENESS", default=False)
FACEGUARD_LIVENESS_CHALLENGE_SECONDS = _get_float_env(
    "FACEGUARD_LIVENESS_CHALLENGE_SECONDS", 8.0, minimum=1.0
)


# --- Scanning loops ---

FACEGUARD_SCAN_INTERVAL_SECONDS = _get_float_env(
    "FACEGUARD_SCAN_INTERVAL_SECONDS", 0.5, minimum=0.05
)
FACEGUARD_FACE_BOX_INTERVAL_SECONDS = _get_float_env(
    "FACEGUARD_FACE_BOX_INTERVAL_SECONDS", 0.4, minimum=0.05
)
FACEGUARD_ENROLLMENT_TIMEOUT_SECONDS = _get_float_env(
    "FACEGUARD_ENROLLMENT_TIMEOUT_SECONDS", 60.0, minimum=1.0
)
FACEGUARD_ENROLLMENT_FAST_PATH = _get_bool_env("FACEGUARD_ENROLLMENT_FAST_PATH", default=False)
FACEGUARD_CAMERA_SOURCE = _parse_int_env("FACEGUARD_CAMERA_SOURCE", 0, minimum=0)
FACEGUARD_CAMERA_WARMUP_SECONDS = _get_float_env(
    "FACEGUARD_CAMERA_WARMUP_SECONDS", 2.0, minimum=0.0
)


# --- Attendance rules ---

FACEGUARD_COOLDOWN_SECONDS = _get_float_env("FACEGUARD_COOLDOWN_SECONDS", 10.0, minimum=0.0)
FACEGUARD_FULL_SHIFT_HOURS = _get_float_env("FACEGUARD_FULL_SHIFT_HOURS", 4.0, minimum=0.0)
FACEGUARD_MIN_CHECKOUT_HOURS = _get_float_env("FACEGUARD_MIN_CHECKOUT_HOURS", 1.0, minimum=0.0)
FACEGUARD_EARLY_CHECKOUT_CONFIRM_SECONDS = _get_float_env(
    "FACEGUARD_EARLY_CHECKOUT_CONFIRM_SECONDS", 30.0, minimum=1.0
)
FACEGUARD_STORE_WRITE_ATTEMPTS = _parse_int_env("FACEGUARD_STORE_WRITE_ATTEMPTS", 3, minimum=1)


# --- Geofence & GPS spoof detection ---

FACEGUARD_GEOFENCE_ENABLED = _get_bool_env("FACEGUARD_GEOFENCE_ENABLED", default=True)
# Fallback boundary used only when no active site is configured.
FACEGUARD_DEFAULT_SITE = {
    "name": os.environ.get("FACEGUARD_DEFAULT_SITE_NAME", "Main Site"),
    "lat": _get_float_env("FACEGUARD_DEFAULT_SITE_LAT", 23.481389),
    "lng": _get_float_env("FACEGUARD_DEFAULT_SITE_LNG", 69.501389),
    "radius": _get_float_env("FACEGUARD_DEFAULT_SITE_RADIUS", 572.0, minimum=1.0),
}
FACEGUARD_GPS_MAX_ACCURACY_METERS = _get_float_env(
    "FACEGUARD_GPS_MAX_ACCURACY_METERS", 100.0, minimum=1.0
)
FACEGUARD_GPS_PERFECT_ACCURACY_METERS = _get_float_env(
    "FACEGUARD_GPS_PERFECT_ACCURACY_METERS", 3.0, minimum=0.0
)
FACEGUARD_GPS_MAX_SPEED_KMH = _get_float_env("FACEGUARD_GPS_MAX_SPEED_KMH", 150.0, minimum=1.0)


# --- Monitoring ---

FACEGUARD_HEALTH_ALERT_HISTORY = _parse_int_env("FACEGUARD_HEALTH_ALERT_HISTORY", 50, minimum=1)
FACEGUARD_MODEL_LOAD_ALERT_SECONDS = _get_float_env(
    "FACEGUARD_MODEL_LOAD_ALERT_SECONDS", 4.0, minimum=0.0
)
FACEGUARD_SCAN_ALERT_SECONDS = _get_float_env("FACEGUARD_SCAN_ALERT_SECONDS", 1.5, minimum=0.0)
