"""Scan and enrollment loops driven by :class:`~faceguard.scheduler.PollingTask`.

A :class:`ScanSession` runs the recognition poll (frame -> descriptor ->
quality/liveness gate -> match -> decision) plus an optional, faster
face-box poll for the tracking overlay. Scanning is refused while the
location guard blocks it, and the guard is consulted again after extraction
so a boundary exit during inference drops the decision.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Protocol

import numpy as np
from django.utils import timezone

from . import monitoring
from .config import (
    get_face_box_interval,
    get_liveness_challenge_seconds,
    get_scan_interval,
    is_liveness_required,
    is_quality_gate_enabled,
)
from .decision import Decision
from .detection import FaceBox, FaceDetection
from .enrollment import EnrollmentResult, EnrollmentSession
from .exceptions import (
    DescriptorSizeError,
    EnrollmentError,
    ModelsUnavailableError,
    StoreWriteError,
)
from .liveness import LivenessChallengeSession, has_face_landmarks
from .matcher import MatchResult
from .quality import QualityReport, check_quality
from .scheduler import PollingTask

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    def read(self, timeout: Optional[float] = 1.0) -> Optional[np.ndarray]: ...

    def close(self) -> None: ...


class ScanOutcomeKind(str, Enum):
    BLOCKED = "blocked"
    NO_FRAME = "no_frame"
    NO_FACE = "no_face"
    POOR_QUALITY = "poor_quality"
    LIVENESS_PENDING = "liveness_pending"
    NO_MATCH = "no_match"
    DECISION = "decision"
    ERROR = "error"


_KEEP_CHALLENGE_OUTCOMES = frozenset(
    {ScanOutcomeKind.LIVENESS_PENDING, ScanOutcomeKind.NO_FRAME}
)


@dataclass(frozen=True)
class ScanOutcome:
    kind: ScanOutcomeKind
    detection: Optional[FaceDetection] = None
    match: Optional[MatchResult] = None
    decision: Optional[Decision] = None
    quality: Optional[QualityReport] = None
    message: str = ""


class ScanSession:
    """One operator's scanning session on a shared camera."""

    def __init__(
        self,
        frame_source: FrameSource,
        extractor: Any,
        service: Any,
        guard: Any,
        *,
        box_source: Optional[FrameSource] = None,
        landmarker: Any = None,
        quality_gate: Optional[bool] = None,
        require_liveness: Optional[bool] = None,
        scan_interval: Optional[float] = None,
        face_box_interval: Optional[float] = None,
        clock: Callable[[], dt.datetime] = timezone.now,
        on_outcome: Optional[Callable[[ScanOutcome], Any]] = None,
    ) -> None:
        self.frame_source = frame_source
        self.box_source = box_source
        self.extractor = extractor
        self.service = service
        self.guard = guard
        self.landmarker = landmarker
        self.quality_gate = is_quality_gate_enabled() if quality_gate is None else quality_gate
        self.require_liveness = (
            is_liveness_required() if require_liveness is None else require_liveness
        )
        if self.require_liveness and landmarker is None:
            raise ValueError("A landmarker is required when liveness is enforced")
        self.scan_interval = get_scan_interval() if scan_interval is None else scan_interval
        self.face_box_interval = (
            get_face_box_interval() if face_box_interval is None else face_box_interval
        )
        self.clock = clock
        self.on_outcome = on_outcome

        self._liveness: Optional[LivenessChallengeSession] = None
        self._last_detection: Optional[FaceDetection] = None
        self._face_box: Optional[FaceBox] = None
        self._last_outcome: Optional[ScanOutcome] = None
        self._scan_task: Optional[PollingTask] = None
        self._box_task: Optional[PollingTask] = None
        self._stop_lock = threading.Lock()
        self._stopped = False

    @property
    def last_detection(self) -> Optional[FaceDetection]:
        return self._last_detection

    @property
    def last_outcome(self) -> Optional[ScanOutcome]:
        return self._last_outcome

    @property
    def face_box(self) -> Optional[FaceBox]:
        return self._face_box

    @property
    def liveness_prompt(self) -> Optional[str]:
        session = self._liveness
        return session.prompt if session is not None else None

    def _blocked(self, fallback: str) -> ScanOutcome:
        state = getattr(self.guard, "state", None)
        message = getattr(state, "message", None) or fallback
        return ScanOutcome(ScanOutcomeKind.BLOCKED, message=message)

    def _check_liveness(self, frame: np.ndarray) -> Optional[str]:
        """Return a prompt while the challenge is unmet, ``None`` once it passes.

        The frame being accepted must itself carry face landmarks, even when
        the challenge was met on an earlier frame.
        """

        session = self._liveness
        if session is None or session.is_expired():
            session = LivenessChallengeSession(window_seconds=get_liveness_challenge_seconds())
            self._liveness = session
        landmarks = self.landmarker.landmarks(frame)
        if not has_face_landmarks(landmarks):
            return "No face detected"
        result = session.observe(landmarks)
        if result.passed:
            return None
        return result.message

    def _scan(self) -> ScanOutcome:
        if not self.guard.scanning_allowed:
            return self._blocked("Scanning blocked by location check")

        frame = self.frame_source.read(timeout=self.scan_interval)
        if frame is None:
            return ScanOutcome(ScanOutcomeKind.NO_FRAME, message="Waiting for camera")

        detection = self.extractor.extract(frame)
        if detection is None:
            return ScanOutcome(ScanOutcomeKind.NO_FACE, message="No face detected")
        self._last_detection = detection

        quality = None
        if self.quality_gate:
            quality = check_quality(detection.cropped_face, face_region=detection.facial_area)
            if not quality.is_good:
                return ScanOutcome(
                    ScanOutcomeKind.POOR_QUALITY,
                    detection=detection,
                    quality=quality,
                    message=", ".join(quality.issues),
                )

        if self.require_liveness:
            prompt = self._check_liveness(frame)
            if prompt is not None:
                return ScanOutcome(
                    ScanOutcomeKind.LIVENESS_PENDING,
                    detection=detection,
                    quality=quality,
                    message=prompt,
                )

        match = self.service.match(detection.descriptor)
        if match is None:
            return ScanOutcome(
                ScanOutcomeKind.NO_MATCH,
                detection=detection,
                quality=quality,
                message="Face not recognised",
            )

        # The guard may have flipped while inference was running.
        if not self.guard.scanning_allowed:
            return self._blocked("Location changed during scan")

        decision = self.service.process_match(match, now=self.clock())
        return ScanOutcome(
            ScanOutcomeKind.DECISION,
            detection=detection,
            match=match,
            decision=decision,
            quality=quality,
            message=decision.message,
        )

    def tick(self) -> ScanOutcome:
        """Run one recognition poll and return what happened."""

        started = time.perf_counter()
        try:
            outcome = self._scan()
        except (ModelsUnavailableError, DescriptorSizeError, StoreWriteError) as exc:
            logger.error(
                "Scan failed: %s",
                exc,
                extra={"event": "scan", "status": "error", "error_type": type(exc).__name__},
            )
            outcome = ScanOutcome(ScanOutcomeKind.ERROR, message=str(exc))
        finally:
            monitoring.observe_stage_duration(
                "scan", time.perf_counter() - started, threshold_key="scan"
            )

        # A challenge only vouches for the face it was met by; a camera gap keeps it.
        if outcome.kind not in _KEEP_CHALLENGE_OUTCOMES:
            self._liveness = None
        monitoring.record_scan_outcome(outcome.kind.value)
        self._last_outcome = outcome
        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    def track_face_box(self) -> Optional[FaceBox]:
        """Refresh the overlay box from the tracking camera consumer."""

        if self.box_source is None:
            return None
        frame = self.box_source.read(timeout=self.face_box_interval)
        if frame is None:
            return self._face_box
        self._face_box = self.extractor.detect_face_box(frame)
        return self._face_box

    def start(self) -> "ScanSession":
        if self._stopped:
            raise RuntimeError("A stopped scan session cannot be restarted")
        self._scan_task = PollingTask("scan", self.scan_interval, self.tick).start()
        if self.box_source is not None:
            self._box_task = PollingTask(
                "face-box", self.face_box_interval, self.track_face_box
            ).start()
        logger.info("Scan session started", extra={"event": "scan_session", "status": "started"})
        return self

    def stop(self) -> None:
        """Cancel both polls and release the camera consumers."""

        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        for task in (self._scan_task, self._box_task):
            if task is not None:
                task.cancel()
        for source in (self.frame_source, self.box_source):
            if source is not None:
                source.close()
        self._face_box = None
        logger.info("Scan session stopped", extra={"event": "scan_session", "status": "stopped"})


class EnrollmentLoop:
    """Poll frames into an :class:`EnrollmentSession` until it ends.

    The loop ends when every required pose is captured, the session times
    out, or the operator cancels; the frame source is closed in every case.
    """

    def __init__(
        self,
        frame_source: FrameSource,
        extractor: Any,
        session: EnrollmentSession,
        *,
        interval: Optional[float] = None,
        on_progress: Optional[Callable[[EnrollmentSession, bool], Any]] = None,
    ) -> None:
        self.frame_source = frame_source
        self.extractor = extractor
        self.session = session
        self.interval = get_scan_interval() if interval is None else interval
        self.on_progress = on_progress
        self._done = threading.Event()
        self._error: Optional[BaseException] = None
        self._task: Optional[PollingTask] = None
        self._closed = False

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def _finish(self) -> None:
        self._done.set()
        if self._task is not None:
            self._task.cancel()
        if not self._closed:
            self._closed = True
            self.frame_source.close()

    def tick(self) -> None:
        if self._done.is_set():
            return
        try:
            self.session.check_timeout()
            frame = self.frame_source.read(timeout=self.interval)
            detection = self.extractor.extract(frame) if frame is not None else None
            captured = self.session.observe(detection)
        except (EnrollmentError, ModelsUnavailableError) as exc:
            self._error = exc
            self._finish()
            return

        if self.on_progress is not None:
            self.on_progress(self.session, captured)
        if self.session.is_complete:
            self._finish()

    def cancel(self) -> None:
        self.session.cancel()
        self._finish()

    def run(self) -> EnrollmentResult:
        """Block until enrollment ends and return its result.

        Raises:
            EnrollmentTimeoutError: the poses were not captured in time.
            EnrollmentCancelledError: :meth:`cancel` was called.
            ModelsUnavailableError: extraction could not run.
        """

        self._task = PollingTask("enrollment", self.interval, self.tick).start()
        try:
            self._done.wait()
        finally:
            self._finish()
        if self._error is not None:
            raise self._error
        return self.session.result()


__all__ = [
    "EnrollmentLoop",
    "FrameSource",
    "ScanOutcome",
    "ScanOutcomeKind",
    "ScanSession",
]
