"""Cancellable fixed-interval polling used by the scan and enrollment loops."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class PollingTask:
    """Run ``callback`` every ``interval`` seconds on a background thread.

    At most one invocation is in flight at any time: a tick that arrives while
    the previous one is still running is skipped rather than queued. The
    thread sleeps on a :class:`threading.Event`, so :meth:`cancel` wakes it
    immediately.
    """

    def __init__(self, name: str, interval: float, callback: Callable[[], Any]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = float(interval)
        self._callback = callback
        self._busy = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set()

    def tick(self) -> bool:
        """Invoke the callback once; return ``False`` if skipped because busy or cancelled."""

        if self._stop.is_set():
            return False
        if not self._busy.acquire(blocking=False):
            logger.debug("Skipping %s tick, previous run still in flight", self.name)
            return False
        try:
            self._callback()
        finally:
            self._busy.release()
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception(
                    "Polling task %s failed",
                    self.name,
                    extra={"event": "polling_task", "status": "error", "task": self.name},
                )
            if self._stop.wait(self.interval):
                break

    def start(self) -> "PollingTask":
        if self._thread is not None:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"poll-{self.name}", daemon=True)
        self._thread.start()
        return self

    def cancel(self, timeout: Optional[float] = 2.0) -> None:
        """Stop polling; waits for an in-flight tick unless called from the task itself."""

        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the task stops; return ``True`` if it did within ``timeout``."""

        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()


__all__ = ["PollingTask"]
