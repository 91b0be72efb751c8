"""Per-worker daily attendance state machine.

A successful match moves a worker ABSENT -> PRESENT -> LEFT. Check-out needs
a full shift; between the minimum and full shift an early check-out has to be
confirmed by a second scan inside a short window. Every processed scan starts
a per-worker cooldown so a face held in frame cannot trigger repeated
transitions.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .config import (
    get_cooldown_seconds,
    get_early_checkout_confirm_seconds,
    get_full_shift_hours,
    get_min_checkout_hours,
)

logger = logging.getLogger(__name__)


class AttendanceState(str, Enum):
    ABSENT = "absent"
    PRESENT = "present"
    LEFT = "left"


class DecisionAction(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"
    EARLY_CHECKOUT_PENDING_CONFIRM = "early_checkout_pending_confirm"
    TOO_EARLY = "too_early"
    DAY_COMPLETED = "day_completed"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class AttendanceRecord:
    """Today's attendance row for one worker as read from the store."""

    check_in_time: Optional[dt.datetime] = None
    check_out_time: Optional[dt.datetime] = None
    status: str = "present"


@dataclass(frozen=True)
class Decision:
    action: DecisionAction
    worker_id: Any
    hours_worked: Optional[float] = None
    message: str = ""
    early: bool = False

    @property
    def requires_write(self) -> bool:
        return self.action in (DecisionAction.CHECK_IN, DecisionAction.CHECK_OUT)


def state_of(record: Optional[AttendanceRecord]) -> AttendanceState:
    if record is None or record.check_in_time is None:
        return AttendanceState.ABSENT
    if record.check_out_time is not None:
        return AttendanceState.LEFT
    return AttendanceState.PRESENT


def format_elapsed(hours: float) -> str:
    minutes = int(hours * 60)
    if hours >= 1:
        whole = int(hours)
        return f"{whole} hour{'s' if whole > 1 else ''} {minutes % 60} min"
    return f"{minutes} min"


class AttendanceDecisionEngine:
    """Decide what a recognised scan means for a worker's attendance today.

    The engine holds the only mutable scanning state: the last decision time
    per worker (cooldown) and armed early check-out confirmations. Both are
    keyed by worker so concurrent confirmations never interfere.
    """

    def __init__(
        self,
        *,
        cooldown_seconds: Optional[float] = None,
        full_shift_hours: Optional[float] = None,
        min_checkout_hours: Optional[float] = None,
        confirm_seconds: Optional[float] = None,
    ) -> None:
        self.cooldown = dt.timedelta(
            seconds=get_cooldown_seconds() if cooldown_seconds is None else cooldown_seconds
        )
        self.full_shift_hours = (
            get_full_shift_hours() if full_shift_hours is None else full_shift_hours
        )
        self.min_checkout_hours = (
            get_min_checkout_hours() if min_checkout_hours is None else min_checkout_hours
        )
        self.confirm_window = dt.timedelta(
            seconds=(
                get_early_checkout_confirm_seconds() if confirm_seconds is None else confirm_seconds
            )
        )
        self._lock = threading.Lock()
        self._last_decision: Dict[Any, dt.datetime] = {}
        self._pending_confirm: Dict[Any, dt.datetime] = {}

    def in_cooldown(self, worker_id: Any, now: dt.datetime) -> bool:
        with self._lock:
            last = self._last_decision.get(worker_id)
        return last is not None and now - last < self.cooldown

    def has_pending_confirmation(self, worker_id: Any, now: dt.datetime) -> bool:
        with self._lock:
            expires = self._pending_confirm.get(worker_id)
        return expires is not None and now < expires

    def decide(
        self, worker_id: Any, record: Optional[AttendanceRecord], now: dt.datetime
    ) -> Decision:
        with self._lock:
            last = self._last_decision.get(worker_id)
            if last is not None and now - last < self.cooldown:
                return Decision(DecisionAction.COOLDOWN, worker_id, message="Already scanned")

            decision = self._decide_locked(worker_id, record, now)
            self._last_decision[worker_id] = now

        logger.info(
            "Attendance decision %s",
            decision.action.value,
            extra={"event": "attendance_decision", "status": decision.action.value},
        )
        return decision

    def _decide_locked(
        self, worker_id: Any, record: Optional[AttendanceRecord], now: dt.datetime
    ) -> Decision:
        state = state_of(record)
        expires = self._pending_confirm.pop(worker_id, None)
        confirmed = expires is not None and now < expires

        if state is AttendanceState.ABSENT:
            return Decision(DecisionAction.CHECK_IN, worker_id, message="Checked in")

        if state is AttendanceState.LEFT:
            return Decision(DecisionAction.DAY_COMPLETED, worker_id, message="Day completed")

        hours = max(0.0, (now - record.check_in_time).total_seconds() / 3600)

        if confirmed:
            return Decision(
                DecisionAction.CHECK_OUT,
                worker_id,
                hours_worked=hours,
                message="Early checkout confirmed",
                early=hours < self.full_shift_hours,
            )

        if hours < self.min_checkout_hours:
            return Decision(
                DecisionAction.TOO_EARLY,
                worker_id,
                hours_worked=hours,
                message=f"Checked in {format_elapsed(hours)} ago. Too early for checkout",
            )

        if hours < self.full_shift_hours:
            self._pending_confirm[worker_id] = now + self.confirm_window
            return Decision(
                DecisionAction.EARLY_CHECKOUT_PENDING_CONFIRM,
                worker_id,
                hours_worked=hours,
                message=(
                    f"Only {int(hours)}h worked. Scan again within "
                    f"{int(self.confirm_window.total_seconds())}s to confirm checkout"
                ),
            )

        return Decision(
            DecisionAction.CHECK_OUT, worker_id, hours_worked=hours, message="Checked out"
        )

    def forget(self, worker_id: Any) -> None:
        """Drop cooldown and pending confirmation, e.g. after a failed write."""

        with self._lock:
            self._last_decision.pop(worker_id, None)
            self._pending_confirm.pop(worker_id, None)

    def reset(self) -> None:
        with self._lock:
            self._last_decision.clear()
            self._pending_confirm.clear()


__all__ = [
    "AttendanceDecisionEngine",
    "AttendanceRecord",
    "AttendanceState",
    "Decision",
    "DecisionAction",
    "format_elapsed",
    "state_of",
]
