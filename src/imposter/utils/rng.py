"""Seeded randomness helpers for deterministic deals."""

import random
from typing import List

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 6


def build_rng(*, seed: int | None = None) -> random.Random:
    """Return a deterministic random generator."""
    return random.Random(seed)


def shuffle_seats(rng: random.Random, total_seats: int) -> List[int]:
    """Return a shuffled list of seat indices.

    Args:
        rng: Random number generator
        total_seats: Number of seats to shuffle

    Returns:
        Permutation of ``0 .. total_seats - 1``
    """
    seats = list(range(total_seats))
    rng.shuffle(seats)
    return seats


def sample_imposters(rng: random.Random, *, total_seats: int, count: int) -> List[int]:
    """Pick ``count`` distinct seat indices without replacement.

    Args:
        rng: Random number generator
        total_seats: Number of seats at the table
        count: Number of imposters to choose

    Returns:
        Sorted list of imposter seat indices
    """
    imposters = rng.sample(range(total_seats), count)
    imposters.sort()
    return imposters


def generate_code(rng: random.Random, *, length: int = CODE_LENGTH, alphabet: str = CODE_ALPHABET) -> str:
    """Return a short session code drawn from an alphabet without look-alike characters."""
    return "".join(rng.choice(alphabet) for _ in range(length))
