"""
App configuration for the faceguard app.

Django discovers this configuration through the ``INSTALLED_APPS`` entry in the
project settings.
"""

from django.apps import AppConfig


class FaceGuardConfig(AppConfig):
    """Configuration class for the faceguard app."""

    name = "faceguard"
    verbose_name = "Face & Geofence Attendance"
