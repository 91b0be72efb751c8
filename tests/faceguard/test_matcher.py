"""Tests for nearest-neighbour matching."""

from __future__ import annotations

import numpy as np

from faceguard.descriptors import DESCRIPTOR_SIZE
from faceguard.matcher import Candidate, find_best_match, similarity_from_distance


def _offset(base: np.ndarray, amount: float) -> np.ndarray:
    shifted = base.copy()
    shifted[0] += amount
    return shifted


BASE = np.zeros(DESCRIPTOR_SIZE)


def test_returns_closest_candidate_within_threshold():
    candidates = [
        Candidate(1, _offset(BASE, 0.4), "Asha"),
        Candidate(2, _offset(BASE, 0.1), "Ravi"),
        Candidate(3, _offset(BASE, 2.0), "Meena"),
    ]

    match = find_best_match(BASE, candidates, 0.55)

    assert match.worker_id == 2
    assert match.name == "Ravi"
    assert match.distance == 0.1
    assert 0 < match.similarity <= 1


def test_no_match_when_best_is_beyond_threshold():
    candidates = [Candidate(1, _offset(BASE, 0.6))]

    assert find_best_match(BASE, candidates, 0.55) is None


def test_distance_equal_to_threshold_matches():
    candidates = [Candidate(1, _offset(BASE, 0.5))]

    assert find_best_match(BASE, candidates, 0.5).worker_id == 1


def test_ties_go_to_lowest_worker_id_regardless_of_order():
    left = Candidate(9, _offset(BASE, 0.2))
    right = Candidate(4, _offset(BASE, -0.2))

    assert find_best_match(BASE, [left, right], 0.55).worker_id == 4
    assert find_best_match(BASE, [right, left], 0.55).worker_id == 4


def test_invalid_candidates_are_skipped():
    candidates = [
        Candidate(1, None),
        Candidate(2, [0.0] * 64),
        Candidate(3, _offset(BASE, 0.3)),
    ]

    assert find_best_match(BASE, candidates, 0.55).worker_id == 3


def test_invalid_probe_or_empty_candidates_return_none():
    assert find_best_match([0.0] * 10, [Candidate(1, BASE)], 0.55) is None
    assert find_best_match(BASE, [], 0.55) is None


def test_matching_is_repeatable():
    candidates = [Candidate(i, _offset(BASE, 0.05 * i)) for i in range(1, 6)]

    first = find_best_match(BASE, candidates, 0.55)
    second = find_best_match(BASE, candidates, 0.55)

    assert first == second


def test_similarity_is_clamped():
    assert similarity_from_distance(0.0, 0.5) == 1.0
    assert similarity_from_distance(1.0, 0.5) == 0.0
    assert similarity_from_distance(0.1, 0.0) == 0.0
