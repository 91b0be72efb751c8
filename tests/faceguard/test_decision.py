"""Tests for the per-worker attendance decision engine."""

from __future__ import annotations

import datetime as dt

import pytest

from faceguard.decision import (
    AttendanceDecisionEngine,
    AttendanceRecord,
    AttendanceState,
    DecisionAction,
    format_elapsed,
    state_of,
)

START = dt.datetime(2026, 3, 2, 8, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def engine():
    return AttendanceDecisionEngine(
        cooldown_seconds=10, full_shift_hours=4, min_checkout_hours=1, confirm_seconds=30
    )


def _present(check_in: dt.datetime = START) -> AttendanceRecord:
    return AttendanceRecord(check_in_time=check_in)


def test_state_of_record():
    assert state_of(None) is AttendanceState.ABSENT
    assert state_of(AttendanceRecord()) is AttendanceState.ABSENT
    assert state_of(_present()) is AttendanceState.PRESENT
    assert state_of(AttendanceRecord(START, START)) is AttendanceState.LEFT


def test_absent_worker_checks_in(engine):
    decision = engine.decide(7, None, START)

    assert decision.action is DecisionAction.CHECK_IN
    assert decision.message == "Checked in"
    assert decision.requires_write


def test_scan_thirty_seconds_after_check_in_is_too_early(engine):
    engine.decide(7, None, START)

    decision = engine.decide(7, _present(), START + dt.timedelta(seconds=30))

    assert decision.action is DecisionAction.TOO_EARLY
    assert decision.message == "Checked in 0 min ago. Too early for checkout"
    assert not decision.requires_write


def test_full_shift_checks_out(engine):
    decision = engine.decide(7, _present(), START + dt.timedelta(hours=5))

    assert decision.action is DecisionAction.CHECK_OUT
    assert decision.message == "Checked out"
    assert decision.hours_worked == pytest.approx(5)
    assert not decision.early


def test_early_checkout_requires_confirmation(engine):
    first_scan = START + dt.timedelta(hours=2)

    pending = engine.decide(7, _present(), first_scan)
    confirmed = engine.decide(7, _present(), first_scan + dt.timedelta(seconds=10))

    assert pending.action is DecisionAction.EARLY_CHECKOUT_PENDING_CONFIRM
    assert "Scan again within 30s" in pending.message
    assert confirmed.action is DecisionAction.CHECK_OUT
    assert confirmed.message == "Early checkout confirmed"
    assert confirmed.early


def test_expired_confirmation_rearms(engine):
    first_scan = START + dt.timedelta(hours=2)
    engine.decide(7, _present(), first_scan)

    later = engine.decide(7, _present(), first_scan + dt.timedelta(seconds=40))

    assert later.action is DecisionAction.EARLY_CHECKOUT_PENDING_CONFIRM
    assert engine.has_pending_confirmation(7, first_scan + dt.timedelta(seconds=45))


def test_confirmations_are_per_worker(engine):
    first_scan = START + dt.timedelta(hours=2)
    engine.decide(7, _present(), first_scan)

    other = engine.decide(8, _present(), first_scan + dt.timedelta(seconds=5))

    assert other.action is DecisionAction.EARLY_CHECKOUT_PENDING_CONFIRM
    assert engine.has_pending_confirmation(7, first_scan + dt.timedelta(seconds=5))


def test_cooldown_suppresses_repeat_scans(engine):
    engine.decide(7, None, START)

    repeat = engine.decide(7, _present(), START + dt.timedelta(seconds=5))

    assert repeat.action is DecisionAction.COOLDOWN
    assert repeat.message == "Already scanned"
    assert engine.in_cooldown(7, START + dt.timedelta(seconds=9))
    assert not engine.in_cooldown(7, START + dt.timedelta(seconds=10))


def test_cooldown_does_not_extend_itself(engine):
    engine.decide(7, None, START)
    engine.decide(7, _present(), START + dt.timedelta(seconds=9))

    decision = engine.decide(7, _present(), START + dt.timedelta(seconds=11))

    assert decision.action is DecisionAction.TOO_EARLY


def test_completed_day_is_reported(engine):
    record = AttendanceRecord(START, START + dt.timedelta(hours=8))

    decision = engine.decide(7, record, START + dt.timedelta(hours=9))

    assert decision.action is DecisionAction.DAY_COMPLETED


def test_forget_clears_cooldown_and_pending(engine):
    first_scan = START + dt.timedelta(hours=2)
    engine.decide(7, _present(), first_scan)

    engine.forget(7)

    assert not engine.in_cooldown(7, first_scan)
    assert not engine.has_pending_confirmation(7, first_scan)
    assert engine.decide(7, None, first_scan).action is DecisionAction.CHECK_IN


def test_engine_reads_defaults_from_settings(settings):
    settings.FACEGUARD_COOLDOWN_SECONDS = 3
    settings.FACEGUARD_FULL_SHIFT_HOURS = 8

    engine = AttendanceDecisionEngine()

    assert engine.cooldown == dt.timedelta(seconds=3)
    assert engine.full_shift_hours == 8


@pytest.mark.parametrize(
    "hours, text", [(0.5, "30 min"), (1.5, "1 hour 30 min"), (2.25, "2 hours 15 min")]
)
def test_format_elapsed(hours, text):
    assert format_elapsed(hours) == text
