"""URL configuration for the LaborOS FaceGuard project."""

from django.contrib import admin
from django.urls import path

from faceguard import views

urlpatterns = [
    path("admin/", admin.site.urls),
    path("health/", views.health, name="faceguard-health"),
    path("metrics/", views.metrics, name="faceguard-metrics"),
    path("attendance/summary/", views.daily_summary, name="faceguard-daily-summary"),
]
