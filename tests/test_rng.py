"""Tests for seeded randomness helpers."""

from __future__ import annotations

import pytest

from imposter.utils.rng import CODE_ALPHABET, CODE_LENGTH, build_rng, generate_code, sample_imposters, shuffle_seats


@pytest.mark.parametrize("total", [3, 7, 10])
def test_shuffle_seats_is_a_permutation(total: int) -> None:
    rng = build_rng(seed=total)
    for _ in range(20):
        assert sorted(shuffle_seats(rng, total)) == list(range(total))


def test_sample_imposters_sorted_and_distinct() -> None:
    rng = build_rng(seed=5)
    for count in range(1, 9):
        picked = sample_imposters(rng, total_seats=10, count=count)
        assert picked == sorted(set(picked))
        assert len(picked) == count
        assert all(0 <= index < 10 for index in picked)


def test_generate_code_uses_unambiguous_alphabet() -> None:
    rng = build_rng(seed=9)
    for _ in range(200):
        code = generate_code(rng)
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)
    assert not set("01IO") & set(CODE_ALPHABET)


def test_same_seed_same_sequence() -> None:
    assert shuffle_seats(build_rng(seed=1), 8) == shuffle_seats(build_rng(seed=1), 8)
