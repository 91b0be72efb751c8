"""Stateful gate that decides whether scanning may run at the current position."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import monitoring
from .config import (
    get_default_site,
    get_gps_max_accuracy,
    get_gps_max_speed_kmh,
    get_gps_perfect_accuracy,
    is_geofence_enabled,
)
from .geofence import CircleBoundary, GeoPoint, Site, evaluate_sites, format_distance
from .spoof import LocationSample, SpoofCheckResult, detect_spoof

logger = logging.getLogger(__name__)


class GuardStatus(str, Enum):
    LOADING = "loading"
    INSIDE = "inside"
    OUTSIDE = "outside"
    SPOOFED = "spoofed"
    UNRELIABLE = "unreliable"
    OVERRIDE = "override"
    DISABLED = "disabled"
    ERROR = "error"


_SCANNING_STATUSES = frozenset({GuardStatus.INSIDE, GuardStatus.OVERRIDE, GuardStatus.DISABLED})


@dataclass(frozen=True)
class GuardState:
    status: GuardStatus
    message: str
    distance_m: Optional[float] = None
    site_name: Optional[str] = None
    sample: Optional[LocationSample] = None

    @property
    def scanning_allowed(self) -> bool:
        return self.status in _SCANNING_STATUSES


SpoofCallback = Callable[[SpoofCheckResult, LocationSample], Any]


def site_from_settings(site: Dict[str, Any]) -> Site:
    return Site(
        id=None,
        name=str(site.get("name", "Site")),
        boundary=CircleBoundary(
            center=GeoPoint(lat=float(site["lat"]), lng=float(site["lng"])),
            radius_m=float(site["radius"]),
        ),
    )


class LocationGuard:
    """Evaluate location samples against site boundaries and spoof heuristics.

    Only the most recent trusted sample (inside or outside, never spoofed or
    unreliable) is kept for the speed and teleport checks. With the geofence
    enabled and no active site configured the guard falls back to the
    configured default site rather than opening up.
    """

    def __init__(
        self,
        sites: Iterable[Site] = (),
        *,
        enabled: Optional[bool] = None,
        on_spoof: Optional[SpoofCallback] = None,
        max_speed_kmh: Optional[float] = None,
        max_accuracy_m: Optional[float] = None,
        perfect_accuracy_m: Optional[float] = None,
    ) -> None:
        self.enabled = is_geofence_enabled() if enabled is None else bool(enabled)
        self.on_spoof = on_spoof
        self.max_speed_kmh = get_gps_max_speed_kmh() if max_speed_kmh is None else max_speed_kmh
        self.max_accuracy_m = get_gps_max_accuracy() if max_accuracy_m is None else max_accuracy_m
        self.perfect_accuracy_m = (
            get_gps_perfect_accuracy() if perfect_accuracy_m is None else perfect_accuracy_m
        )
        self._lock = threading.RLock()
        self._sites: List[Site] = self._with_fallback(sites)
        self._previous: Optional[LocationSample] = None
        if self.enabled:
            self._state = GuardState(GuardStatus.LOADING, "Getting location...")
        else:
            self._state = GuardState(GuardStatus.DISABLED, "Location check disabled")

    @staticmethod
    def _with_fallback(sites: Iterable[Site]) -> List[Site]:
        resolved = list(sites)
        if not resolved:
            resolved = [site_from_settings(get_default_site())]
        return resolved

    @property
    def state(self) -> GuardState:
        with self._lock:
            return self._state

    @property
    def scanning_allowed(self) -> bool:
        return self.state.scanning_allowed

    @property
    def sites(self) -> List[Site]:
        with self._lock:
            return list(self._sites)

    @property
    def previous_sample(self) -> Optional[LocationSample]:
        with self._lock:
            return self._previous

    def _set_state(self, state: GuardState) -> GuardState:
        self._state = state
        monitoring.record_guard_status(state.status.value)
        return state

    def _containment_state(self, sample: LocationSample) -> GuardState:
        result = evaluate_sites(GeoPoint(lat=sample.lat, lng=sample.lng), self._sites)
        if result.inside:
            return GuardState(
                GuardStatus.INSIDE,
                f"Inside {result.site.name}",
                distance_m=0.0,
                site_name=result.site.name,
                sample=sample,
            )
        site_name = result.closest_site.name if result.closest_site else None
        distance = result.distance_to_boundary_m
        if distance is None:
            message = "No site configured"
        else:
            message = f"You are {format_distance(distance)} away from {site_name}"
        return GuardState(
            GuardStatus.OUTSIDE, message, distance_m=distance, site_name=site_name, sample=sample
        )

    def evaluate(self, sample: LocationSample, override_active: bool = False) -> GuardState:
        """Process a new position reading and return the resulting state.

        ``override_active`` is an approved remote-access exception for this
        user and site; it bypasses every check while it holds.
        """

        spoof: Optional[SpoofCheckResult] = None
        with self._lock:
            if not self.enabled:
                return self._set_state(GuardState(GuardStatus.DISABLED, "Location check disabled"))
            if override_active:
                return self._set_state(
                    GuardState(GuardStatus.OVERRIDE, "Remote access approved", sample=sample)
                )

            result = detect_spoof(
                sample,
                self._previous,
                max_speed_kmh=self.max_speed_kmh,
                max_accuracy_m=self.max_accuracy_m,
                perfect_accuracy_m=self.perfect_accuracy_m,
            )
            if result.is_spoofed:
                spoof = result
                state = self._set_state(
                    GuardState(
                        GuardStatus.SPOOFED,
                        result.reason or "GPS spoofing detected",
                        sample=sample,
                    )
                )
            elif result.unreliable:
                state = self._set_state(
                    GuardState(
                        GuardStatus.UNRELIABLE,
                        result.reason or "GPS accuracy too poor",
                        sample=sample,
                    )
                )
            else:
                self._previous = sample
                state = self._set_state(self._containment_state(sample))

        if spoof is not None:
            monitoring.record_spoof_detected(spoof.reason, spoof.confidence)
            if self.on_spoof is not None:
                self.on_spoof(spoof, sample)
        return state

    def update_sites(self, sites: Iterable[Site]) -> GuardState:
        """Replace the site list and re-check the last trusted sample against it."""

        with self._lock:
            self._sites = self._with_fallback(sites)
            if not self.enabled or self._previous is None:
                return self._state
            if self._state.status not in (GuardStatus.INSIDE, GuardStatus.OUTSIDE):
                return self._state
            return self._set_state(self._containment_state(self._previous))

    def fail(self, message: str = "Failed to get location") -> GuardState:
        """Record a positioning failure (permission denied, timeout)."""

        with self._lock:
            if not self.enabled:
                return self._state
            logger.warning(message, extra={"event": "location_guard", "status": "error"})
            return self._set_state(GuardState(GuardStatus.ERROR, message))


__all__ = ["GuardState", "GuardStatus", "LocationGuard", "site_from_settings"]
