"""Exception hierarchy for the faceguard core.

Only genuine failures are raised. Expected outcomes of a scan (no face in
frame, poor quality, no match, too-early checkout) are returned as values.
"""

from __future__ import annotations

from typing import Any, Optional


class FaceGuardError(Exception):
    """Base class for all faceguard errors."""


class ModelsUnavailableError(FaceGuardError):
    """Face detection/recognition models could not be loaded."""


class DescriptorSizeError(FaceGuardError, ValueError):
    """A descriptor had the wrong dimensionality or non-numeric content."""


class EnrollmentError(FaceGuardError):
    """Base class for enrollment failures. Captured samples are discarded."""


class DuplicateFaceError(EnrollmentError):
    """The enrolled face already belongs to an existing worker."""

    def __init__(self, worker_id: Any, name: str = "", distance: Optional[float] = None) -> None:
        self.worker_id = worker_id
        self.name = name
        self.distance = distance
        label = name or str(worker_id)
        super().__init__(f"Face already registered as {label}")


class EnrollmentTimeoutError(EnrollmentError):
    """The required poses were not captured before the enrollment deadline."""


class EnrollmentCancelledError(EnrollmentError):
    """The operator cancelled the enrollment."""


class StoreWriteError(FaceGuardError):
    """A write to the attendance or worker store did not succeed."""


class LocationBlockedError(FaceGuardError):
    """Scanning was attempted while the location guard blocks it."""
