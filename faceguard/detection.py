"""Value types describing a detected face and its head pose.

These are kept apart from :mod:`faceguard.extractor` so enrollment, scanning
and their tests can work with detections without importing DeepFace.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import cv2
import numpy as np

FRONTAL_TOLERANCE = 0.40
POSE_ANGLE_THRESHOLD = 15
CROP_PADDING = 0.4
CROP_SIZE = 200


class HeadPose(str, Enum):
    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class PoseEstimate:
    head_pose: HeadPose
    face_angle: int
    is_frontal: bool


@dataclass(frozen=True)
class FaceBox:
    """Face bounding box expressed as percentages of the frame size."""

    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class FaceDetection:
    """A single face found in a frame together with its descriptor."""

    descriptor: np.ndarray
    cropped_face: Optional[np.ndarray]
    is_frontal: bool
    head_pose: HeadPose
    face_angle: int
    facial_area: Dict[str, Any] = field(default_factory=dict)


def _point_x(point: Any) -> Optional[float]:
    if point is None:
        return None
    if isinstance(point, Mapping):
        value = point.get("x")
    elif isinstance(point, (Sequence, np.ndarray)) and len(point) >= 1:
        value = point[0]
    else:
        value = point
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def estimate_head_pose(left_eye: Any, right_eye: Any, nose: Any) -> PoseEstimate:
    """Estimate the head pose from the horizontal nose offset between the eyes.

    ``face_angle`` is the nose offset from the eye midpoint as a percentage of
    the eye distance: negative when the nose sits left of the midpoint in
    image coordinates. The face is frontal while the offset stays below 40% of
    the eye distance. Missing or coincident eye points give a non-frontal
    centre estimate.
    """

    left_x, right_x, nose_x = _point_x(left_eye), _point_x(right_eye), _point_x(nose)
    if left_x is None or right_x is None or nose_x is None:
        return PoseEstimate(HeadPose.CENTER, 0, False)

    eye_distance = abs(right_x - left_x)
    if eye_distance == 0:
        return PoseEstimate(HeadPose.CENTER, 0, False)

    offset = nose_x - (left_x + right_x) / 2
    face_angle = int(round(offset / eye_distance * 100))
    is_frontal = abs(offset) < eye_distance * FRONTAL_TOLERANCE

    if face_angle < -POSE_ANGLE_THRESHOLD:
        pose = HeadPose.LEFT
    elif face_angle > POSE_ANGLE_THRESHOLD:
        pose = HeadPose.RIGHT
    else:
        pose = HeadPose.CENTER
    return PoseEstimate(pose, face_angle, is_frontal)


def crop_face(
    frame: np.ndarray,
    area: Mapping[str, Any],
    padding: float = CROP_PADDING,
    size: int = CROP_SIZE,
) -> Optional[np.ndarray]:
    """Crop ``area`` from ``frame`` with proportional padding and resize it.

    The padding is a fraction of the longer box side applied on every edge and
    clamped to the frame. Returns ``None`` when the area is empty.
    """

    if frame is None or getattr(frame, "size", 0) == 0:
        return None
    try:
        x, y = int(area["x"]), int(area["y"])
        w, h = int(area["w"]), int(area["h"])
    except (KeyError, TypeError, ValueError):
        return None
    if w <= 0 or h <= 0:
        return None

    frame_h, frame_w = frame.shape[:2]
    pad = int(max(w, h) * padding)
    left = max(0, x - pad)
    top = max(0, y - pad)
    right = min(frame_w, x + w + pad)
    bottom = min(frame_h, y + h + pad)
    if right <= left or bottom <= top:
        return None

    region = frame[top:bottom, left:right]
    return cv2.resize(region, (size, size), interpolation=cv2.INTER_AREA)


def box_centre(area: Mapping[str, Any]) -> Tuple[float, float]:
    return (
        float(area.get("x", 0)) + float(area.get("w", 0)) / 2,
        float(area.get("y", 0)) + float(area.get("h", 0)) / 2,
    )


def to_face_box(area: Mapping[str, Any], frame_shape: Sequence[int]) -> Optional[FaceBox]:
    """Convert a pixel facial area to percentages of the frame."""

    frame_h, frame_w = frame_shape[:2]
    if not frame_w or not frame_h:
        return None
    try:
        return FaceBox(
            x=float(area["x"]) / frame_w * 100,
            y=float(area["y"]) / frame_h * 100,
            width=float(area["w"]) / frame_w * 100,
            height=float(area["h"]) / frame_h * 100,
        )
    except (KeyError, TypeError, ValueError):
        return None


__all__ = [
    "FaceBox",
    "FaceDetection",
    "HeadPose",
    "PoseEstimate",
    "box_centre",
    "crop_face",
    "estimate_head_pose",
    "to_face_box",
]
