"""Attribute-overlap scoring and decoy selection."""

from __future__ import annotations

import random
from typing import FrozenSet, Sequence

from .catalog import ATTRIBUTES, NONE_VALUE, CatalogItem
from .errors import CatalogLoadError

# Attributes where a shared "none" value is not evidence of similarity.
NONE_EXCLUDED: FrozenSet[str] = frozenset({"element"})
MIN_FLOOR = 1
MAX_FLOOR = len(ATTRIBUTES)


def score(a: CatalogItem, b: CatalogItem) -> int:
    """Count matching attributes between two items.

    >>> fire = CatalogItem("Fireball", {"type": "spell", "category": "damage", "element": "fire", "family": "none"})
    >>> score(fire, fire)
    4
    >>> knight = CatalogItem("Knight", {"type": "troop", "category": "tank", "element": "none", "family": "none"})
    >>> score(knight, knight)
    3
    """

    matches = 0
    for key in ATTRIBUTES:
        left = a.attribute(key)
        if left != b.attribute(key):
            continue
        if key in NONE_EXCLUDED and left == NONE_VALUE:
            continue
        matches += 1
    return matches


def find_decoy(
    real: CatalogItem,
    floor: int,
    catalog: Sequence[CatalogItem],
    rng: random.Random,
) -> CatalogItem:
    """Pick an item similar to ``real`` for the imposters.

    Candidates scoring at least ``floor`` are drawn uniformly. When none
    qualify the floor drops by one and the search repeats; below floor 1
    the pick is uniform over every item except ``real``.
    """

    others = [item for item in catalog if item.name != real.name]
    if not others:
        raise CatalogLoadError(f"No decoy candidates besides {real.name}")

    scored = [(item, score(real, item)) for item in others]
    threshold = max(MIN_FLOOR, min(int(floor), MAX_FLOOR))
    while threshold >= MIN_FLOOR:
        candidates = [item for item, points in scored if points >= threshold]
        if candidates:
            return rng.choice(candidates)
        threshold -= 1

    return rng.choice(others)
