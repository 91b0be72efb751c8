"""Tests for the face-crop quality gate."""

from __future__ import annotations

import numpy as np

from faceguard.quality import check_quality


def _checkerboard(size: int = 200) -> np.ndarray:
    pattern = (np.indices((size, size)).sum(axis=0) % 2) * 255
    return np.repeat(pattern[:, :, None], 3, axis=2).astype(np.uint8)


def test_sharp_well_lit_crop_passes():
    report = check_quality(_checkerboard())

    assert report.is_good
    assert report.issues == []
    assert 0.45 < report.brightness < 0.55
    assert report.sharpness == 1.0
    assert report.face_size_ratio == 1.0


def test_black_image_is_dark_and_blurry():
    report = check_quality(np.zeros((200, 200, 3), dtype=np.uint8))

    assert not report.is_good
    assert report.issues == ["Too dark", "Blurry"]


def test_white_image_is_bright_and_blurry():
    report = check_quality(np.full((200, 200, 3), 255, dtype=np.uint8))

    assert report.issues == ["Too bright", "Blurry"]


def test_small_crop_is_flagged():
    report = check_quality(_checkerboard(size=60))

    assert report.issues == ["Face too small"]
    assert report.face_size_ratio == 0.3


def test_face_region_overrides_image_size():
    report = check_quality(_checkerboard(), face_region={"x": 0, "y": 0, "w": 60, "h": 180})

    assert "Face too small" in report.issues


def test_grayscale_images_are_accepted():
    gray = _checkerboard()[:, :, 0]

    assert check_quality(gray).is_good


def test_invalid_images_are_rejected():
    assert check_quality(None).issues == ["Invalid image"]
    assert not check_quality(np.zeros((0, 0, 3), dtype=np.uint8)).is_good
