"""Landmark-based liveness checks using MediaPipe Face Mesh geometry.

Landmarks are passed as an ``(N, 2)`` or ``(N, 3)`` array of normalised
``x, y[, z]`` coordinates in the Face Mesh ordering. Arrays with fewer than
468 points are treated as "no face" by every detector.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import numpy as np

from .exceptions import ModelsUnavailableError

logger = logging.getLogger(__name__)

MIN_LANDMARKS = 468

LEFT_EYE_TOP = 159
LEFT_EYE_BOTTOM = 145
LEFT_EYE_LEFT = 33
LEFT_EYE_RIGHT = 133
RIGHT_EYE_TOP = 386
RIGHT_EYE_BOTTOM = 374
RIGHT_EYE_LEFT = 362
RIGHT_EYE_RIGHT = 263
UPPER_LIP_CENTER = 13
LOWER_LIP_CENTER = 14
LEFT_LIP_CORNER = 61
RIGHT_LIP_CORNER = 291
NOSE_TIP = 1
FOREHEAD = 10
CHIN = 152
LEFT_CHEEK = 234
RIGHT_CHEEK = 454

BLINK_EAR_THRESHOLD = 0.15
SMILE_THRESHOLD = 0.08
MOUTH_OPEN_THRESHOLD = 0.15
HEAD_TURN_THRESHOLD = 0.03
FLAT_DEPTH_THRESHOLD = 0.01
_EPSILON = 0.0001


class Challenge(str, Enum):
    BLINK = "BLINK"
    SMILE = "SMILE"
    OPEN_MOUTH = "OPEN_MOUTH"
    LOOK_LEFT = "LOOK_LEFT"
    LOOK_RIGHT = "LOOK_RIGHT"


RANDOM_CHALLENGES = (Challenge.BLINK, Challenge.SMILE, Challenge.OPEN_MOUTH)

CHALLENGE_PROMPTS = {
    Challenge.BLINK: "Please blink",
    Challenge.SMILE: "Please smile",
    Challenge.OPEN_MOUTH: "Please open mouth",
    Challenge.LOOK_LEFT: "Please look left",
    Challenge.LOOK_RIGHT: "Please look right",
}

_CHALLENGE_SUCCESS = {
    Challenge.BLINK: "Blink detected!",
    Challenge.SMILE: "Smile detected!",
    Challenge.OPEN_MOUTH: "Mouth open detected!",
    Challenge.LOOK_LEFT: "Left turn detected!",
    Challenge.LOOK_RIGHT: "Right turn detected!",
}


@dataclass(frozen=True)
class LivenessResult:
    passed: bool
    confidence: float
    message: str


@dataclass(frozen=True)
class FramingResult:
    """Whether the face is centred and at a usable distance from the camera."""

    is_good: bool
    face_detected: bool
    is_centered: bool
    is_correct_distance: bool
    message: str


def _as_landmarks(landmarks: Any) -> Optional[np.ndarray]:
    if landmarks is None:
        return None
    points = np.asarray(landmarks, dtype=np.float64)
    if points.ndim != 2 or points.shape[0] < MIN_LANDMARKS or points.shape[1] < 2:
        return None
    return points


def has_face_landmarks(landmarks: Any) -> bool:
    return _as_landmarks(landmarks) is not None


def _distance(first: np.ndarray, second: np.ndarray) -> float:
    return float(np.hypot(first[0] - second[0], first[1] - second[1]))


def eye_aspect_ratio(landmarks: Any) -> float:
    """Mean vertical/horizontal eye opening; lower means more closed.

    Returns ``1.0`` (eyes open) when no face is present.
    """

    points = _as_landmarks(landmarks)
    if points is None:
        return 1.0
    left = _distance(points[LEFT_EYE_TOP], points[LEFT_EYE_BOTTOM]) / (
        _distance(points[LEFT_EYE_LEFT], points[LEFT_EYE_RIGHT]) + _EPSILON
    )
    right = _distance(points[RIGHT_EYE_TOP], points[RIGHT_EYE_BOTTOM]) / (
        _distance(points[RIGHT_EYE_LEFT], points[RIGHT_EYE_RIGHT]) + _EPSILON
    )
    return (left + right) / 2


def mouth_aspect_ratio(landmarks: Any) -> float:
    points = _as_landmarks(landmarks)
    if points is None:
        return 0.0
    vertical = _distance(points[UPPER_LIP_CENTER], points[LOWER_LIP_CENTER])
    horizontal = _distance(points[LEFT_LIP_CORNER], points[RIGHT_LIP_CORNER])
    return vertical / (horizontal + _EPSILON)


def detect_blink(landmarks: Any, threshold: float = BLINK_EAR_THRESHOLD) -> bool:
    if _as_landmarks(landmarks) is None:
        return False
    return eye_aspect_ratio(landmarks) < threshold


def detect_smile(landmarks: Any, threshold: float = SMILE_THRESHOLD) -> bool:
    """Both mouth corners sit above the upper-lip centre by more than ``threshold``."""

    points = _as_landmarks(landmarks)
    if points is None:
        return False
    upper_y = points[UPPER_LIP_CENTER][1]
    left_up = upper_y - points[LEFT_LIP_CORNER][1]
    right_up = upper_y - points[RIGHT_LIP_CORNER][1]
    return bool(left_up > threshold and right_up > threshold)


def detect_mouth_open(landmarks: Any, threshold: float = MOUTH_OPEN_THRESHOLD) -> bool:
    if _as_landmarks(landmarks) is None:
        return False
    return mouth_aspect_ratio(landmarks) > threshold


def detect_head_turn(landmarks: Any, threshold: float = HEAD_TURN_THRESHOLD) -> str:
    """Return ``"LEFT"``, ``"RIGHT"`` or ``"CENTER"``.

    A nose shifted towards image-right of the cheek midpoint means the head
    turned to the subject's left.
    """

    points = _as_landmarks(landmarks)
    if points is None:
        return "CENTER"
    centre_x = (points[LEFT_CHEEK][0] + points[RIGHT_CHEEK][0]) / 2
    offset = points[NOSE_TIP][0] - centre_x
    if offset > threshold:
        return "LEFT"
    if offset < -threshold:
        return "RIGHT"
    return "CENTER"


def detect_photo_spoof(landmarks: Any, threshold: float = FLAT_DEPTH_THRESHOLD) -> bool:
    """Return ``True`` when the face looks flat (likely a printed photo or screen).

    Missing landmarks count as a spoof. Landmarks without depth cannot be
    judged and are assumed real.
    """

    points = _as_landmarks(landmarks)
    if points is None:
        return True
    if points.shape[1] < 3:
        return False
    nose_depth = abs(points[NOSE_TIP][2])
    cheek_depth = (abs(points[LEFT_CHEEK][2]) + abs(points[RIGHT_CHEEK][2])) / 2
    return bool(cheek_depth - nose_depth < threshold)


def check_face_framing(landmarks: Any) -> FramingResult:
    """Check the face is centred (within 0.2 of frame centre) and 20-70% of frame height."""

    points = _as_landmarks(landmarks)
    if points is None:
        return FramingResult(False, False, False, False, "No face detected")

    forehead, chin = points[FOREHEAD], points[CHIN]
    left_cheek, right_cheek = points[LEFT_CHEEK], points[RIGHT_CHEEK]
    face_height = abs(chin[1] - forehead[1])
    centre_x = (left_cheek[0] + right_cheek[0]) / 2
    centre_y = (forehead[1] + chin[1]) / 2

    is_centered = abs(centre_x - 0.5) < 0.2 and abs(centre_y - 0.5) < 0.2
    is_correct_distance = 0.2 < face_height < 0.7

    message = "Perfect!"
    if not is_centered:
        message = "Center your face"
    if face_height < 0.2:
        message = "Move closer"
    if face_height > 0.7:
        message = "Move back"

    return FramingResult(
        is_good=bool(is_centered and is_correct_distance),
        face_detected=True,
        is_centered=bool(is_centered),
        is_correct_distance=bool(is_correct_distance),
        message=message,
    )


def generate_challenge(rng: Optional[random.Random] = None) -> Challenge:
    """Pick one of the expression challenges (head turns are not drawn)."""

    chooser = rng or random
    return chooser.choice(RANDOM_CHALLENGES)


def check_liveness_challenge(challenge: Challenge, landmarks: Any) -> LivenessResult:
    if _as_landmarks(landmarks) is None:
        return LivenessResult(False, 0.0, "No face detected")

    if challenge is Challenge.BLINK:
        passed = detect_blink(landmarks)
    elif challenge is Challenge.SMILE:
        passed = detect_smile(landmarks)
    elif challenge is Challenge.OPEN_MOUTH:
        passed = detect_mouth_open(landmarks)
    elif challenge is Challenge.LOOK_LEFT:
        passed = detect_head_turn(landmarks) == "LEFT"
    elif challenge is Challenge.LOOK_RIGHT:
        passed = detect_head_turn(landmarks) == "RIGHT"
    else:
        return LivenessResult(False, 0.0, "Unknown challenge")

    if passed:
        return LivenessResult(True, 1.0, _CHALLENGE_SUCCESS[challenge])
    return LivenessResult(False, 0.0, CHALLENGE_PROMPTS[challenge])


class LivenessChallengeSession:
    """One randomly drawn challenge that must be satisfied within a time window.

    Once passed the session stays passed; once the window closes without a
    pass it stays failed.
    """

    def __init__(
        self,
        challenge: Optional[Challenge] = None,
        *,
        window_seconds: float = 8.0,
        started_at: Optional[float] = None,
        rng: Optional[random.Random] = None,
        reject_flat_faces: bool = False,
    ) -> None:
        self.challenge = challenge or generate_challenge(rng)
        self.window_seconds = float(window_seconds)
        self.started_at = time.monotonic() if started_at is None else float(started_at)
        self.reject_flat_faces = reject_flat_faces
        self._passed = False

    @property
    def prompt(self) -> str:
        return CHALLENGE_PROMPTS[self.challenge]

    @property
    def passed(self) -> bool:
        return self._passed

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.monotonic() if now is None else now
        return not self._passed and now - self.started_at > self.window_seconds

    def observe(self, landmarks: Any, now: Optional[float] = None) -> LivenessResult:
        if self._passed:
            return LivenessResult(True, 1.0, _CHALLENGE_SUCCESS[self.challenge])
        if self.is_expired(now):
            return LivenessResult(False, 0.0, "Liveness challenge expired")
        if self.reject_flat_faces and detect_photo_spoof(landmarks):
            logger.warning(
                "Flat face rejected during liveness challenge",
                extra={"event": "liveness", "status": "photo_spoof"},
            )
            return LivenessResult(False, 0.0, "Possible photo detected")

        result = check_liveness_challenge(self.challenge, landmarks)
        if result.passed:
            self._passed = True
            logger.info(
                "Liveness challenge passed",
                extra={"event": "liveness", "status": "passed", "challenge": self.challenge.value},
            )
        return result


class MeshLandmarker:
    """Produce Face Mesh landmark arrays from BGR frames.

    Requires the optional ``mediapipe`` dependency (``pip install .[liveness]``).
    """

    def __init__(self, *, min_detection_confidence: float = 0.5) -> None:
        try:
            import mediapipe as mp
        except ImportError as exc:
            raise ModelsUnavailableError(
                "mediapipe is required for liveness checks; install the 'liveness' extra"
            ) from exc
        self._mesh = mp.solutions.face_mesh.FaceMesh(
            static_image_mode=False,
            max_num_faces=1,
            refine_landmarks=True,
            min_detection_confidence=min_detection_confidence,
        )

    def landmarks(self, frame: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if frame is None or getattr(frame, "size", 0) == 0:
            return None
        rgb = np.ascontiguousarray(frame[..., ::-1])
        results = self._mesh.process(rgb)
        if not results.multi_face_landmarks:
            return None
        face = results.multi_face_landmarks[0]
        return np.array([(p.x, p.y, p.z) for p in face.landmark], dtype=np.float64)

    def close(self) -> None:
        self._mesh.close()


__all__ = [
    "Challenge",
    "FramingResult",
    "LivenessChallengeSession",
    "LivenessResult",
    "MeshLandmarker",
    "check_face_framing",
    "check_liveness_challenge",
    "detect_blink",
    "detect_head_turn",
    "detect_mouth_open",
    "detect_photo_spoof",
    "detect_smile",
    "eye_aspect_ratio",
    "generate_challenge",
    "has_face_landmarks",
    "mouth_aspect_ratio",
]
