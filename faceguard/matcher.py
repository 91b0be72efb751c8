"""Nearest-neighbour matching of a probe descriptor against enrolled workers.

The scan is a plain linear pass: at the expected scale (tens to a few hundred
active workers) an index structure would add complexity without a measurable
gain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

import numpy as np

from .descriptors import (
    DESCRIPTOR_SIZE,
    descriptor_distance,
    is_valid_descriptor,
    is_within_distance_threshold,
)

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.55


@dataclass(frozen=True)
class Candidate:
    """An enrolled worker considered during matching."""

    worker_id: Any
    descriptor: Optional[Sequence[float]]
    name: str = ""


@dataclass(frozen=True)
class MatchResult:
    """Nearest enrolled worker found within the threshold."""

    worker_id: Any
    distance: float
    similarity: float
    name: str = ""


def _tie_break_key(worker_id: Any) -> tuple:
    # Numeric ids sort numerically, everything else by its string form.
    if isinstance(worker_id, (int, np.integer)) and not isinstance(worker_id, bool):
        return (0, int(worker_id), "")
    return (1, 0, str(worker_id))


def similarity_from_distance(distance: float, threshold: float) -> float:
    """Display-only similarity in [0, 1]; not used for accept/reject."""

    if threshold <= 0:
        return 0.0
    return max(0.0, 1.0 - distance / threshold)


def find_best_match(
    probe: Sequence[float],
    candidates: Iterable[Candidate],
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    *,
    size: int = DESCRIPTOR_SIZE,
) -> Optional[MatchResult]:
    """Return the closest candidate when its distance is within ``threshold``.

    Candidates with a missing or wrongly sized descriptor are skipped. When two
    candidates are equally close the one with the lowest worker id wins, so the
    result does not depend on the order the store returned them in.
    """

    if not is_valid_descriptor(probe, size):
        logger.debug("Probe descriptor rejected before matching")
        return None

    best: Optional[Candidate] = None
    best_distance: Optional[float] = None
    compared = 0

    for candidate in candidates:
        if not is_valid_descriptor(candidate.descriptor, size):
            continue
        distance = descriptor_distance(probe, candidate.descriptor)
        compared += 1

        if best_distance is None or distance < best_distance:
            best, best_distance = candidate, distance
        elif distance == best_distance and _tie_break_key(candidate.worker_id) < _tie_break_key(
            best.worker_id
        ):
            best = candidate

    if best is None or not is_within_distance_threshold(best_distance, threshold):
        logger.debug(
            "No match among %d candidates (best distance %s, threshold %.3f)",
            compared,
            "n/a" if best_distance is None else f"{best_distance:.3f}",
            threshold,
        )
        return None

    return MatchResult(
        worker_id=best.worker_id,
        distance=best_distance,
        similarity=similarity_from_distance(best_distance, threshold),
        name=best.name,
    )


__all__ = [
    "Candidate",
    "DEFAULT_MATCH_THRESHOLD",
    "MatchResult",
    "find_best_match",
    "similarity_from_distance",
]
