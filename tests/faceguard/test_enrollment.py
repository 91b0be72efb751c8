"""Tests for the multi-pose enrollment session."""

from __future__ import annotations

import numpy as np
import pytest

from faceguard.descriptors import DESCRIPTOR_SIZE, descriptor_distance
from faceguard.detection import FaceDetection, HeadPose
from faceguard.enrollment import REQUIRED_POSES, EnrollmentSession, find_duplicate
from faceguard.exceptions import (
    EnrollmentCancelledError,
    EnrollmentError,
    EnrollmentTimeoutError,
)
from faceguard.matcher import Candidate


def _detection(pose: HeadPose, descriptor, crop=None) -> FaceDetection:
    return FaceDetection(
        descriptor=np.asarray(descriptor, dtype=np.float64),
        cropped_face=crop,
        is_frontal=pose is HeadPose.CENTER,
        head_pose=pose,
        face_angle=0,
    )


def _session(**kwargs) -> EnrollmentSession:
    kwargs.setdefault("timeout", 60.0)
    kwargs.setdefault("fast_path", False)
    kwargs.setdefault("started_at", 0.0)
    return EnrollmentSession(**kwargs)


def test_poses_are_captured_in_strict_order():
    session = _session()
    vector = np.ones(DESCRIPTOR_SIZE)

    assert session.required_pose is HeadPose.CENTER
    assert not session.observe(_detection(HeadPose.LEFT, vector), now=1.0)
    assert session.observe(_detection(HeadPose.CENTER, vector), now=1.0)
    assert session.required_pose is HeadPose.LEFT
    assert not session.observe(_detection(HeadPose.RIGHT, vector), now=2.0)
    assert session.observe(_detection(HeadPose.LEFT, vector), now=2.0)
    assert session.observe(_detection(HeadPose.RIGHT, vector), now=3.0)

    assert session.is_complete
    assert session.required_pose is None
    assert session.prompt == "Enrollment complete"


def test_missing_detection_is_ignored():
    session = _session()

    assert not session.observe(None, now=1.0)
    assert session.samples == []


def test_result_averages_samples_and_uses_centre_photo():
    crop = np.zeros((200, 200, 3), dtype=np.uint8)
    session = _session()
    session.observe(_detection(HeadPose.CENTER, np.full(DESCRIPTOR_SIZE, 0.0), crop), now=1.0)
    session.observe(_detection(HeadPose.LEFT, np.full(DESCRIPTOR_SIZE, 0.3)), now=2.0)
    session.observe(_detection(HeadPose.RIGHT, np.full(DESCRIPTOR_SIZE, 0.6)), now=3.0)

    result = session.result()

    assert np.allclose(result.descriptor, 0.3)
    assert result.photo is crop
    assert result.samples_used == 3


def test_averaged_descriptor_stays_closer_to_its_owner_than_to_others():
    rng = np.random.default_rng(7)
    owner = rng.normal(size=DESCRIPTOR_SIZE)
    stranger = rng.normal(size=DESCRIPTOR_SIZE)
    session = _session()
    for now, pose in enumerate(REQUIRED_POSES):
        noisy = owner + rng.normal(scale=0.05, size=DESCRIPTOR_SIZE)
        session.observe(_detection(pose, noisy), now=float(now))

    descriptor = session.result().descriptor

    assert session.result().samples_used == len(REQUIRED_POSES)
    assert descriptor_distance(descriptor, owner) < descriptor_distance(descriptor, stranger)


def test_fast_path_finishes_after_two_captures():
    session = _session(fast_path=True)
    vector = np.ones(DESCRIPTOR_SIZE)

    session.observe(_detection(HeadPose.CENTER, vector), now=1.0)
    session.observe(_detection(HeadPose.LEFT, vector), now=2.0)

    assert session.is_complete
    assert session.result().samples_used == 2


def test_timeout_discards_samples():
    session = _session(timeout=60.0)
    session.observe(_detection(HeadPose.CENTER, np.ones(DESCRIPTOR_SIZE)), now=10.0)

    with pytest.raises(EnrollmentTimeoutError):
        session.check_timeout(now=61.0)

    assert session.samples == []
    with pytest.raises(EnrollmentTimeoutError):
        session.observe(_detection(HeadPose.LEFT, np.ones(DESCRIPTOR_SIZE)), now=62.0)


def test_cancel_discards_samples_and_blocks_result():
    session = _session()
    session.observe(_detection(HeadPose.CENTER, np.ones(DESCRIPTOR_SIZE)), now=1.0)

    session.cancel()

    assert session.is_cancelled
    assert session.samples == []
    with pytest.raises(EnrollmentCancelledError):
        session.result()


def test_incomplete_result_raises():
    session = _session()
    session.observe(_detection(HeadPose.CENTER, np.ones(DESCRIPTOR_SIZE)), now=1.0)

    with pytest.raises(EnrollmentError):
        session.result()


def test_zero_descriptor_result_is_rejected():
    session = _session(fast_path=True)
    session.observe(_detection(HeadPose.CENTER, np.zeros(DESCRIPTOR_SIZE)), now=1.0)
    session.observe(_detection(HeadPose.LEFT, np.zeros(DESCRIPTOR_SIZE)), now=2.0)

    with pytest.raises(EnrollmentError):
        session.result()


def test_find_duplicate_uses_stricter_threshold():
    base = np.zeros(DESCRIPTOR_SIZE)
    near = base.copy()
    near[0] = 0.52
    candidates = [Candidate(5, near, "Asha")]

    assert find_duplicate(base, candidates, threshold=0.5) is None
    assert find_duplicate(base, candidates, threshold=0.55).worker_id == 5
