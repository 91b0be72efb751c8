"""Face descriptor primitives shared by matching and enrollment.

A descriptor is the 128-value embedding produced for one face. This module
keeps the coercion, validation, distance and averaging logic in pure
functions so they can be covered by fast unit tests using synthetic vectors
instead of the DeepFace integration.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Sequence

import numpy as np

from .exceptions import DescriptorSizeError

logger = logging.getLogger(__name__)

DESCRIPTOR_SIZE = 128

# Read-only float64 vector of length DESCRIPTOR_SIZE.
FaceDescriptor = np.ndarray


def as_descriptor(values, size: int = DESCRIPTOR_SIZE) -> FaceDescriptor:
    """Coerce ``values`` into an immutable descriptor.

    Raises:
        DescriptorSizeError: when the payload is not numeric, is not finite or
            does not have exactly ``size`` elements.
    """

    if values is None:
        raise DescriptorSizeError("Descriptor is missing")

    try:
        vector = np.array([float(value) for value in values], dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise DescriptorSizeError(f"Descriptor values must be numeric: {exc}") from exc

    if vector.ndim != 1 or vector.size != size:
        raise DescriptorSizeError(f"Descriptor must have {size} values, got {vector.size}")

    if not np.all(np.isfinite(vector)):
        raise DescriptorSizeError("Descriptor contains non-finite values")

    vector.setflags(write=False)
    return vector


def is_valid_descriptor(values, size: int = DESCRIPTOR_SIZE) -> bool:
    """Return ``True`` when ``values`` can be used as a descriptor of ``size``."""

    try:
        as_descriptor(values, size)
    except DescriptorSizeError:
        return False
    return True


def descriptor_distance(first: Sequence[float], second: Sequence[float]) -> float:
    """Return the Euclidean distance between two descriptors of equal length."""

    left = np.asarray(first, dtype=np.float64)
    right = np.asarray(second, dtype=np.float64)
    if left.shape != right.shape or left.ndim != 1:
        raise DescriptorSizeError(
            f"Cannot compare descriptors of shape {left.shape} and {right.shape}"
        )
    return float(np.linalg.norm(left - right))


def is_within_distance_threshold(distance: Optional[float], threshold: float) -> bool:
    """Return ``True`` when the distance does not exceed the configured threshold."""

    if distance is None:
        return False

    if math.isnan(distance):
        return False

    return bool(distance <= threshold)


def average_descriptors(
    descriptors: Iterable[Sequence[float]], size: int = DESCRIPTOR_SIZE
) -> FaceDescriptor:
    """Average descriptors dimension by dimension.

    An empty input returns a zero vector, which callers must treat as a failure
    sentinel (see :func:`is_zero_descriptor`). A single descriptor is returned
    unchanged.
    """

    vectors = [as_descriptor(descriptor, size) for descriptor in descriptors]
    if not vectors:
        empty = np.zeros(size, dtype=np.float64)
        empty.setflags(write=False)
        return empty

    if len(vectors) == 1:
        return vectors[0]

    mean = np.mean(np.stack(vectors), axis=0)
    mean.setflags(write=False)
    return mean


def is_zero_descriptor(descriptor: Sequence[float]) -> bool:
    """Return ``True`` for the all-zero sentinel produced by empty averaging."""

    return not np.any(np.asarray(descriptor, dtype=np.float64))


def descriptor_to_list(descriptor: Sequence[float]) -> list[float]:
    return [float(value) for value in descriptor]


def descriptor_from_list(values: Sequence[float], size: int = DESCRIPTOR_SIZE) -> FaceDescriptor:
    return as_descriptor(values, size)


__all__ = [
    "DESCRIPTOR_SIZE",
    "FaceDescriptor",
    "as_descriptor",
    "average_descriptors",
    "descriptor_distance",
    "descriptor_from_list",
    "descriptor_to_list",
    "is_valid_descriptor",
    "is_within_distance_threshold",
    "is_zero_descriptor",
]
