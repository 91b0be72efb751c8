"""Tests for landmark-based liveness checks."""

from __future__ import annotations

import random

import numpy as np

from faceguard import liveness
from faceguard.liveness import (
    RANDOM_CHALLENGES,
    Challenge,
    LivenessChallengeSession,
    check_face_framing,
    check_liveness_challenge,
    detect_blink,
    detect_head_turn,
    detect_mouth_open,
    detect_photo_spoof,
    detect_smile,
    eye_aspect_ratio,
    generate_challenge,
)

NEUTRAL_LAYOUT = {
    liveness.LEFT_EYE_LEFT: (0.40, 0.45, 0.0),
    liveness.LEFT_EYE_RIGHT: (0.46, 0.45, 0.0),
    liveness.LEFT_EYE_TOP: (0.43, 0.44, 0.0),
    liveness.LEFT_EYE_BOTTOM: (0.43, 0.46, 0.0),
    liveness.RIGHT_EYE_LEFT: (0.54, 0.45, 0.0),
    liveness.RIGHT_EYE_RIGHT: (0.60, 0.45, 0.0),
    liveness.RIGHT_EYE_TOP: (0.57, 0.44, 0.0),
    liveness.RIGHT_EYE_BOTTOM: (0.57, 0.46, 0.0),
    liveness.UPPER_LIP_CENTER: (0.50, 0.60, 0.0),
    liveness.LOWER_LIP_CENTER: (0.50, 0.61, 0.0),
    liveness.LEFT_LIP_CORNER: (0.45, 0.60, 0.0),
    liveness.RIGHT_LIP_CORNER: (0.55, 0.60, 0.0),
    liveness.NOSE_TIP: (0.50, 0.52, -0.02),
    liveness.LEFT_CHEEK: (0.35, 0.50, 0.12),
    liveness.RIGHT_CHEEK: (0.65, 0.50, 0.12),
    liveness.FOREHEAD: (0.50, 0.30, 0.0),
    liveness.CHIN: (0.50, 0.75, 0.0),
}

CLOSED_EYES = {
    liveness.LEFT_EYE_TOP: (0.43, 0.450, 0.0),
    liveness.LEFT_EYE_BOTTOM: (0.43, 0.451, 0.0),
    liveness.RIGHT_EYE_TOP: (0.57, 0.450, 0.0),
    liveness.RIGHT_EYE_BOTTOM: (0.57, 0.451, 0.0),
}


def _face(overrides=None) -> np.ndarray:
    """A neutral, centred face with open eyes, closed mouth and real depth."""

    points = np.zeros((468, 3), dtype=np.float64)
    layout = dict(NEUTRAL_LAYOUT)
    layout.update(overrides or {})
    for index, point in layout.items():
        points[index] = point
    return points


def test_neutral_face_triggers_nothing():
    face = _face()

    assert not detect_blink(face)
    assert not detect_smile(face)
    assert not detect_mouth_open(face)
    assert detect_head_turn(face) == "CENTER"
    assert not detect_photo_spoof(face)


def test_closed_eyes_are_a_blink():
    assert detect_blink(_face(CLOSED_EYES))


def test_raised_mouth_corners_are_a_smile():
    face = _face(
        {
            liveness.LEFT_LIP_CORNER: (0.45, 0.50, 0.0),
            liveness.RIGHT_LIP_CORNER: (0.55, 0.50, 0.0),
        }
    )

    assert detect_smile(face)


def test_dropped_lower_lip_is_an_open_mouth():
    assert detect_mouth_open(_face({liveness.LOWER_LIP_CENTER: (0.50, 0.64, 0.0)}))


def test_head_turn_direction_follows_nose_offset():
    assert detect_head_turn(_face({liveness.NOSE_TIP: (0.55, 0.52, -0.02)})) == "LEFT"
    assert detect_head_turn(_face({liveness.NOSE_TIP: (0.45, 0.52, -0.02)})) == "RIGHT"


def test_flat_face_is_a_photo_spoof():
    flat = _face()
    flat[:, 2] = 0.0

    assert detect_photo_spoof(flat)
    assert not detect_photo_spoof(flat[:, :2])


def test_missing_face_defaults():
    too_few = np.zeros((100, 3))

    assert eye_aspect_ratio(too_few) == 1.0
    assert not detect_blink(None)
    assert detect_head_turn(too_few) == "CENTER"
    assert detect_photo_spoof(None)
    assert check_liveness_challenge(Challenge.BLINK, None).message == "No face detected"


def test_framing_messages():
    assert check_face_framing(_face()).message == "Perfect!"
    assert check_face_framing(_face()).is_good

    small = _face({liveness.FOREHEAD: (0.5, 0.45, 0.0), liveness.CHIN: (0.5, 0.60, 0.0)})
    assert check_face_framing(small).message == "Move closer"

    large = _face({liveness.FOREHEAD: (0.5, 0.05, 0.0), liveness.CHIN: (0.5, 0.95, 0.0)})
    assert check_face_framing(large).message == "Move back"

    off_centre = _face(
        {
            liveness.LEFT_CHEEK: (0.05, 0.50, 0.12),
            liveness.RIGHT_CHEEK: (0.25, 0.50, 0.12),
        }
    )
    result = check_face_framing(off_centre)
    assert result.message == "Center your face"
    assert not result.is_centered

    assert not check_face_framing(None).face_detected


def test_random_challenges_are_expressions_only():
    rng = random.Random(3)

    for _ in range(20):
        assert generate_challenge(rng) in RANDOM_CHALLENGES


def test_challenge_results_carry_messages():
    passed = check_liveness_challenge(Challenge.BLINK, _face(CLOSED_EYES))
    pending = check_liveness_challenge(Challenge.SMILE, _face())

    assert passed.passed and passed.message == "Blink detected!"
    assert not pending.passed and pending.message == "Please smile"


def test_session_stays_passed_once_met():
    session = LivenessChallengeSession(Challenge.BLINK, window_seconds=8.0, started_at=0.0)

    assert not session.observe(_face(), now=1.0).passed
    assert session.observe(_face(CLOSED_EYES), now=2.0).passed
    assert session.observe(_face(), now=30.0).passed
    assert session.passed
    assert not session.is_expired(now=30.0)


def test_session_expires_after_window():
    session = LivenessChallengeSession(Challenge.BLINK, window_seconds=8.0, started_at=0.0)

    result = session.observe(_face(CLOSED_EYES), now=9.0)

    assert not result.passed
    assert result.message == "Liveness challenge expired"
    assert session.is_expired(now=9.0)


def test_session_can_reject_flat_faces():
    flat = _face(CLOSED_EYES)
    flat[:, 2] = 0.0
    session = LivenessChallengeSession(
        Challenge.BLINK, started_at=0.0, reject_flat_faces=True
    )

    result = session.observe(flat, now=1.0)

    assert not result.passed
    assert result.message == "Possible photo detected"
    assert session.prompt == "Please blink"
