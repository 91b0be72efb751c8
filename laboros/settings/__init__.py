"""Settings package for the LaborOS FaceGuard project."""

from .base import *  # noqa: F401,F403
from .sentry import initialize_sentry

initialize_sentry()
