"""Image quality gate applied to face crops before they are used."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


BRIGHTNESS_LOW_THRESHOLD = 0.2
BRIGHTNESS_HIGH_THRESHOLD = 0.85
SHARPNESS_MIN_THRESHOLD = 0.1
FACE_SIZE_MIN_RATIO = 0.5
FACE_SIZE_REFERENCE_PX = 200


@dataclass(frozen=True)
class QualityReport:
    """Outcome of the quality gate.

    Attributes:
        is_good: ``True`` when no issue was found.
        brightness: Mean luminance scaled to 0-1.
        sharpness: Normalised Laplacian response, 0-1.
        face_size_ratio: Shorter face side relative to a 200 px reference.
        issues: Human readable reasons the image was rejected.
    """

    is_good: bool
    brightness: float = 0.0
    sharpness: float = 0.0
    face_size_ratio: float = 0.0
    issues: List[str] = field(default_factory=list)


def _luminance(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image.astype(np.float64)
    b, g, r = (image[..., i].astype(np.float64) for i in range(3))
    return 0.299 * r + 0.587 * g + 0.114 * b


def _sharpness(image: np.ndarray) -> float:
    """Mean absolute 4-neighbour Laplacian over summed channels, capped at 1."""

    if image.ndim == 2:
        summed = image.astype(np.float64) * 3
    else:
        summed = image[..., :3].astype(np.float64).sum(axis=2)
    height, width = summed.shape
    if height < 3 or width < 3:
        return 0.0
    laplacian = cv2.Laplacian(summed, cv2.CV_64F, ksize=1)[1:-1, 1:-1]
    total = float(np.abs(laplacian).sum())
    return min(total / (width * height * 100), 1.0)


def check_quality(
    image: Optional[np.ndarray], face_region: Optional[Dict[str, int]] = None
) -> QualityReport:
    """Score a BGR (or grayscale) face image for brightness, sharpness and size.

    ``face_region`` is the face box inside ``image``; when omitted the whole
    image is assumed to be the face crop.
    """

    if image is None or not hasattr(image, "shape") or image.size == 0 or image.ndim not in (2, 3):
        return QualityReport(is_good=False, issues=["Invalid image"])

    brightness = float(np.mean(_luminance(image))) / 255.0
    sharpness = _sharpness(image)

    if face_region:
        side = min(int(face_region.get("w", 0)), int(face_region.get("h", 0)))
    else:
        side = min(image.shape[0], image.shape[1])
    face_size_ratio = side / FACE_SIZE_REFERENCE_PX

    issues: List[str] = []
    if brightness < BRIGHTNESS_LOW_THRESHOLD:
        issues.append("Too dark")
    if brightness > BRIGHTNESS_HIGH_THRESHOLD:
        issues.append("Too bright")
    if sharpness < SHARPNESS_MIN_THRESHOLD:
        issues.append("Blurry")
    if face_size_ratio < FACE_SIZE_MIN_RATIO:
        issues.append("Face too small")

    if issues:
        logger.debug("Quality gate rejected image: %s", ", ".join(issues))

    return QualityReport(
        is_good=not issues,
        brightness=brightness,
        sharpness=sharpness,
        face_size_ratio=face_size_ratio,
        issues=issues,
    )


__all__ = ["QualityReport", "check_quality"]
