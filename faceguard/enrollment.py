"""Multi-pose enrollment: capture centre, left and right samples and average them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from .config import get_duplicate_threshold, get_enrollment_timeout, is_enrollment_fast_path
from .descriptors import FaceDescriptor, average_descriptors, is_zero_descriptor
from .detection import FaceDetection, HeadPose
from .exceptions import EnrollmentCancelledError, EnrollmentError, EnrollmentTimeoutError
from .matcher import Candidate, MatchResult, find_best_match

logger = logging.getLogger(__name__)

REQUIRED_POSES = (HeadPose.CENTER, HeadPose.LEFT, HeadPose.RIGHT)
FAST_PATH_CAPTURES = 2

POSE_PROMPTS = {
    HeadPose.CENTER: "Look straight at the camera",
    HeadPose.LEFT: "Turn your head slightly left",
    HeadPose.RIGHT: "Turn your head slightly right",
}


@dataclass(frozen=True)
class EnrollmentSample:
    descriptor: FaceDescriptor
    pose: HeadPose
    cropped_face: Optional[np.ndarray] = None


@dataclass(frozen=True)
class EnrollmentResult:
    """Averaged descriptor plus the centre-pose crop used as profile photo."""

    descriptor: FaceDescriptor
    photo: Optional[np.ndarray]
    samples_used: int


def aggregate(samples: Sequence[EnrollmentSample]) -> FaceDescriptor:
    return average_descriptors(sample.descriptor for sample in samples)


class EnrollmentSession:
    """Collects one sample per required pose, in order.

    A detection is only accepted when its head pose equals the pose currently
    requested; anything else is ignored. The session must complete before its
    deadline, otherwise every captured sample is discarded.
    """

    def __init__(
        self,
        *,
        timeout: Optional[float] = None,
        fast_path: Optional[bool] = None,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = float(get_enrollment_timeout() if timeout is None else timeout)
        self.fast_path = is_enrollment_fast_path() if fast_path is None else bool(fast_path)
        self._clock = clock
        self.started_at = clock() if started_at is None else float(started_at)
        self._samples: List[EnrollmentSample] = []
        self._cancelled = False
        self._timed_out = False

    @property
    def target_captures(self) -> int:
        return FAST_PATH_CAPTURES if self.fast_path else len(REQUIRED_POSES)

    @property
    def samples(self) -> List[EnrollmentSample]:
        return list(self._samples)

    @property
    def is_complete(self) -> bool:
        return len(self._samples) >= self.target_captures

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    @property
    def required_pose(self) -> Optional[HeadPose]:
        if self.is_complete:
            return None
        return REQUIRED_POSES[len(self._samples)]

    @property
    def prompt(self) -> str:
        pose = self.required_pose
        return POSE_PROMPTS[pose] if pose is not None else "Enrollment complete"

    def _ensure_active(self, now: float) -> None:
        if self._cancelled:
            raise EnrollmentCancelledError("Enrollment was cancelled")
        if self._timed_out:
            raise EnrollmentTimeoutError("Enrollment timed out")
        if not self.is_complete and now - self.started_at > self.timeout:
            self._timed_out = True
            captured = len(self._samples)
            self._samples.clear()
            logger.warning(
                "Enrollment timed out after %d of %d poses",
                captured,
                self.target_captures,
                extra={"event": "enrollment", "status": "timeout"},
            )
            raise EnrollmentTimeoutError(
                f"Enrollment did not finish within {self.timeout:.0f} seconds"
            )

    def check_timeout(self, now: Optional[float] = None) -> None:
        """Raise :class:`EnrollmentTimeoutError` once the deadline has passed."""

        self._ensure_active(self._clock() if now is None else now)

    def observe(self, detection: Optional[FaceDetection], now: Optional[float] = None) -> bool:
        """Offer a detection; return ``True`` when it was captured."""

        self._ensure_active(self._clock() if now is None else now)
        if detection is None or self.is_complete:
            return False

        required = self.required_pose
        if detection.head_pose != required:
            return False

        self._samples.append(
            EnrollmentSample(
                descriptor=detection.descriptor,
                pose=detection.head_pose,
                cropped_face=detection.cropped_face,
            )
        )
        logger.debug(
            "Captured %s pose (%d/%d)", required.value, len(self._samples), self.target_captures
        )
        return True

    def cancel(self) -> None:
        self._cancelled = True
        self._samples.clear()

    def result(self) -> EnrollmentResult:
        if self._cancelled:
            raise EnrollmentCancelledError("Enrollment was cancelled")
        if not self.is_complete:
            raise EnrollmentError(
                f"Enrollment incomplete: {len(self._samples)} of {self.target_captures} poses captured"
            )
        descriptor = aggregate(self._samples)
        if is_zero_descriptor(descriptor):
            raise EnrollmentError("Enrollment produced an empty descriptor")
        centre = next((s for s in self._samples if s.pose == HeadPose.CENTER), self._samples[0])
        return EnrollmentResult(
            descriptor=descriptor,
            photo=centre.cropped_face,
            samples_used=len(self._samples),
        )


def find_duplicate(
    descriptor: Sequence[float],
    candidates: Iterable[Candidate],
    threshold: Optional[float] = None,
) -> Optional[MatchResult]:
    """Return the existing worker this face already belongs to, if any."""

    threshold = get_duplicate_threshold() if threshold is None else threshold
    return find_best_match(descriptor, candidates, threshold)


__all__ = [
    "EnrollmentResult",
    "EnrollmentSample",
    "EnrollmentSession",
    "POSE_PROMPTS",
    "REQUIRED_POSES",
    "aggregate",
    "find_duplicate",
]
