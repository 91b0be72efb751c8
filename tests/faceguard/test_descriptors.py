"""Tests for descriptor coercion, distance and averaging."""

from __future__ import annotations

import numpy as np
import pytest

from faceguard.descriptors import (
    DESCRIPTOR_SIZE,
    as_descriptor,
    average_descriptors,
    descriptor_distance,
    descriptor_from_list,
    descriptor_to_list,
    is_valid_descriptor,
    is_within_distance_threshold,
    is_zero_descriptor,
)
from faceguard.exceptions import DescriptorSizeError


def _vector(seed: int) -> np.ndarray:
    return np.random.default_rng(seed).normal(size=DESCRIPTOR_SIZE)


def test_as_descriptor_is_read_only_float_vector():
    descriptor = as_descriptor(list(range(DESCRIPTOR_SIZE)))

    assert descriptor.dtype == np.float64
    assert descriptor.shape == (DESCRIPTOR_SIZE,)
    with pytest.raises(ValueError):
        descriptor[0] = 42.0


@pytest.mark.parametrize(
    "values",
    [None, [0.0] * 127, [0.0] * 129, ["a"] * DESCRIPTOR_SIZE, [float("nan")] * DESCRIPTOR_SIZE],
)
def test_as_descriptor_rejects_malformed_payloads(values):
    with pytest.raises(DescriptorSizeError):
        as_descriptor(values)
    assert not is_valid_descriptor(values)


def test_distance_is_symmetric_and_zero_for_identity():
    first, second = _vector(1), _vector(2)

    assert descriptor_distance(first, first) == 0.0
    assert descriptor_distance(first, second) == pytest.approx(descriptor_distance(second, first))
    assert descriptor_distance(first, second) > 0


def test_distance_rejects_mismatched_lengths():
    with pytest.raises(DescriptorSizeError):
        descriptor_distance([0.0] * 3, [0.0] * 4)


def test_threshold_is_inclusive_and_ignores_missing_distances():
    assert is_within_distance_threshold(0.55, 0.55)
    assert not is_within_distance_threshold(0.551, 0.55)
    assert not is_within_distance_threshold(None, 0.55)
    assert not is_within_distance_threshold(float("nan"), 0.55)


def test_average_is_component_wise_mean():
    first = np.zeros(DESCRIPTOR_SIZE)
    second = np.full(DESCRIPTOR_SIZE, 2.0)

    averaged = average_descriptors([first, second])

    assert np.allclose(averaged, 1.0)


def test_average_of_single_descriptor_is_unchanged():
    vector = _vector(3)

    assert np.array_equal(average_descriptors([vector]), vector)


def test_average_of_nothing_is_zero_sentinel():
    averaged = average_descriptors([])

    assert averaged.shape == (DESCRIPTOR_SIZE,)
    assert is_zero_descriptor(averaged)
    assert not is_zero_descriptor(_vector(4))


def test_list_conversion_keeps_values():
    vector = _vector(5)

    restored = descriptor_from_list(descriptor_to_list(vector))

    assert np.array_equal(restored, vector)
