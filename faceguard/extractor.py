"""DeepFace-backed face detection and descriptor extraction."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import numpy as np
from deepface import DeepFace

from . import monitoring
from .config import get_descriptor_size, get_detector_backend, get_model_name
from .descriptors import as_descriptor
from .detection import (
    FaceBox,
    FaceDetection,
    box_centre,
    crop_face,
    estimate_head_pose,
    to_face_box,
)
from .exceptions import ModelsUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FaceModelHandle:
    """Loaded recognition model and the detector it is paired with."""

    model_name: str
    detector_backend: str
    model: Any = None

    @property
    def is_usable(self) -> bool:
        return self.model is not None


def load_face_models(
    model_name: Optional[str] = None, detector_backend: Optional[str] = None
) -> FaceModelHandle:
    """Build the recognition model once, before any scanning starts.

    Raises:
        ModelsUnavailableError: when DeepFace cannot build the model, for
            example because weights cannot be downloaded.
    """

    model_name = model_name or get_model_name()
    detector_backend = detector_backend or get_detector_backend()
    started = time.perf_counter()
    try:
        model = DeepFace.build_model(model_name)
    except (ValueError, OSError, ImportError, AttributeError) as exc:
        monitoring.record_model_load(False, time.perf_counter() - started, error=str(exc))
        raise ModelsUnavailableError(f"Unable to load face model '{model_name}': {exc}") from exc

    if model is None:
        monitoring.record_model_load(False, time.perf_counter() - started, error="empty model")
        raise ModelsUnavailableError(f"DeepFace returned no model for '{model_name}'")

    monitoring.record_model_load(True, time.perf_counter() - started)
    return FaceModelHandle(model_name=model_name, detector_backend=detector_backend, model=model)


def _representations(payload) -> List[Dict[str, Any]]:
    if isinstance(payload, dict):
        payload = [payload]
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict) and "embedding" in item]
    return []


class DescriptorExtractor:
    """Turn camera frames into :class:`FaceDetection` values."""

    def __init__(self, handle: FaceModelHandle, descriptor_size: Optional[int] = None) -> None:
        self.handle = handle
        self.descriptor_size = descriptor_size or get_descriptor_size()

    def _require_models(self) -> None:
        if not self.handle.is_usable:
            raise ModelsUnavailableError("Face models have not been loaded")

    def extract(self, frame: Optional[np.ndarray]) -> Optional[FaceDetection]:
        """Detect exactly one face and compute its descriptor.

        Returns ``None`` when the frame holds no face or more than one face.
        """

        self._require_models()
        if frame is None or getattr(frame, "size", 0) == 0:
            return None

        started = time.perf_counter()
        try:
            payload = DeepFace.represent(
                img_path=frame,
                model_name=self.handle.model_name,
                detector_backend=self.handle.detector_backend,
                enforce_detection=True,
                align=True,
            )
        except ValueError:
            # DeepFace signals "no face" with ValueError when detection is enforced.
            return None
        except (OSError, AttributeError) as exc:
            raise ModelsUnavailableError(f"Face model failed during extraction: {exc}") from exc
        finally:
            monitoring.observe_stage_duration("extract", time.perf_counter() - started)

        faces = _representations(payload)
        if len(faces) != 1:
            if len(faces) > 1:
                logger.debug("Ignoring frame with %d faces", len(faces))
            return None

        face = faces[0]
        descriptor = as_descriptor(face["embedding"], self.descriptor_size)
        area = face.get("facial_area") or {}
        nose = area.get("nose")
        if nose is None and area:
            nose = box_centre(area)
        pose = estimate_head_pose(area.get("left_eye"), area.get("right_eye"), nose)

        return FaceDetection(
            descriptor=descriptor,
            cropped_face=crop_face(frame, area),
            is_frontal=pose.is_frontal,
            head_pose=pose.head_pose,
            face_angle=pose.face_angle,
            facial_area=dict(area),
        )

    def detect_face_box(self, frame: Optional[np.ndarray]) -> Optional[FaceBox]:
        """Locate the most confident face for the tracking overlay only."""

        self._require_models()
        if frame is None or getattr(frame, "size", 0) == 0:
            return None
        try:
            faces = DeepFace.extract_faces(
                img_path=frame,
                detector_backend=self.handle.detector_backend,
                enforce_detection=False,
            )
        except ValueError:
            return None

        # Without enforced detection DeepFace returns the whole frame at confidence 0.
        detected = [face for face in faces or [] if float(face.get("confidence") or 0) > 0]
        if not detected:
            return None
        best = max(detected, key=lambda face: float(face.get("confidence") or 0))
        return to_face_box(best.get("facial_area") or {}, frame.shape)


__all__ = ["DescriptorExtractor", "FaceModelHandle", "load_face_models"]
