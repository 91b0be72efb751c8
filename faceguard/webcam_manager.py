"""Shared webcam used by the scan and enrollment loops.

The device is opened when the first frame consumer is acquired and released
as soon as the last consumer closes, so a hidden scanner never holds the
camera lock.
"""

from __future__ import annotations

import atexit
import logging
import threading
import time
from typing import Optional, Tuple

import numpy as np
from imutils.video import VideoStream

from . import monitoring
from .config import get_camera_source, get_camera_warmup

logger = logging.getLogger(__name__)


class FrameConsumer:
    """Handle for reading frames; close it (or use it as a context manager) when done."""

    def __init__(self, manager: "WebcamManager") -> None:
        self._manager = manager
        self._last_frame_id = -1
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def open(self) -> "FrameConsumer":
        if not self._active:
            self._manager._register_consumer()
            self._active = True
        return self

    def __enter__(self) -> "FrameConsumer":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._active:
            self._active = False
            self._manager._release_consumer()

    def read(self, timeout: Optional[float] = 1.0) -> Optional[np.ndarray]:
        """Return the next unseen frame or ``None`` if none arrives in time."""

        if not self._active:
            return None

        frame, frame_id = self._manager._wait_for_frame(self._last_frame_id, timeout)
        if frame is not None:
            self._last_frame_id = frame_id
        return frame


class WebcamManager:
    """Own the capture thread and fan the latest frame out to consumers."""

    def __init__(
        self,
        src: Optional[int] = None,
        warmup_time: Optional[float] = None,
        *,
        release_when_idle: bool = True,
    ) -> None:
        self._src = get_camera_source() if src is None else src
        self._warmup_time = max(0.0, get_camera_warmup() if warmup_time is None else warmup_time)
        self._release_when_idle = release_when_idle
        self._lifecycle_lock = threading.RLock()
        self._stream: Optional[VideoStream] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._frame_lock = threading.Condition()
        self._latest_frame: Optional[np.ndarray] = None
        self._latest_frame_id = 0
        self._consumer_lock = threading.Lock()
        self._consumer_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def consumer_count(self) -> int:
        with self._consumer_lock:
            return self._consumer_count

    def start(self) -> None:
        with self._lifecycle_lock:
            if self._running:
                return
            try:
                self._stream = VideoStream(src=self._src).start()
                if self._warmup_time:
                    time.sleep(self._warmup_time)
                self._running = True
                self._thread = threading.Thread(
                    target=self._capture_loop, name="faceguard-camera", daemon=True
                )
                self._thread.start()
            except Exception as exc:
                self._running = False
                self._stream = None
                monitoring.record_camera_start(False, error=str(exc))
                raise
            monitoring.record_camera_start(True)

    def shutdown(self) -> None:
        with self._lifecycle_lock:
            if not self._running:
                return

            self._running = False
            with self._frame_lock:
                self._frame_lock.notify_all()

            if self._thread is not None:
                self._thread.join(timeout=1.0)
                if self._thread.is_alive():
                    logger.warning(
                        "Camera capture thread did not stop in time",
                        extra={"event": "camera_stop", "status": "timeout"},
                    )
                self._thread = None

            stream, self._stream = self._stream, None
            with self._frame_lock:
                self._latest_frame = None
            try:
                if stream is not None:
                    stream.stop()
            finally:
                monitoring.record_camera_stop()

    def frame_consumer(self) -> FrameConsumer:
        """Start the camera if needed and return an open consumer."""

        self.start()
        return FrameConsumer(self).open()

    def _register_consumer(self) -> None:
        with self._consumer_lock:
            self._consumer_count += 1
            monitoring.update_consumer_count(self._consumer_count)

    def _release_consumer(self) -> None:
        with self._consumer_lock:
            self._consumer_count = max(0, self._consumer_count - 1)
            monitoring.update_consumer_count(self._consumer_count)
            idle = self._consumer_count == 0
        if idle and self._release_when_idle:
            self.shutdown()

    def _capture_loop(self) -> None:
        while self._running:
            stream = self._stream
            if stream is None:
                break
            frame = stream.read()
            if frame is None:
                monitoring.record_frame_drop()
                time.sleep(0.01)
                continue

            with self._frame_lock:
                self._latest_frame = frame.copy()
                self._latest_frame_id += 1
                self._frame_lock.notify_all()

    def _wait_for_frame(
        self, after_frame_id: int, timeout: Optional[float]
    ) -> Tuple[Optional[np.ndarray], int]:
        end_time = None if timeout is None else time.monotonic() + max(timeout, 0.0)

        with self._frame_lock:
            while self._running and self._latest_frame_id <= after_frame_id:
                if end_time is None:
                    self._frame_lock.wait()
                    continue
                remaining = end_time - time.monotonic()
                if remaining <= 0:
                    break
                self._frame_lock.wait(timeout=remaining)

            if self._latest_frame is None or self._latest_frame_id <= after_frame_id:
                return None, after_frame_id
            return self._latest_frame.copy(), self._latest_frame_id


_manager_lock = threading.Lock()
_manager_instance: Optional[WebcamManager] = None


def get_webcam_manager() -> WebcamManager:
    """Return the process-wide :class:`WebcamManager`."""

    global _manager_instance
    if _manager_instance is None:
        with _manager_lock:
            if _manager_instance is None:
                _manager_instance = WebcamManager()
    return _manager_instance


def reset_webcam_manager() -> None:
    global _manager_instance
    with _manager_lock:
        manager, _manager_instance = _manager_instance, None
    if manager is not None:
        manager.shutdown()


atexit.register(reset_webcam_manager)


__all__ = ["FrameConsumer", "WebcamManager", "get_webcam_manager", "reset_webcam_manager"]
