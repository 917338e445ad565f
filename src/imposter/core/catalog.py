"""Item catalog loaded once from the packaged CSV table."""

from __future__ import annotations

import csv
import random
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from .errors import CatalogLoadError

LOGGER = structlog.get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "cards.csv"
ATTRIBUTES: Tuple[str, ...] = ("type", "category", "element", "family")
NONE_VALUE = "none"


@dataclass(frozen=True, slots=True)
class CatalogItem:
    """A single catalog record: a unique name plus categorical attributes."""

    name: str
    attributes: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def attribute(self, key: str) -> str:
        return self.attributes.get(key, NONE_VALUE)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        for key in ATTRIBUTES:
            payload[key] = self.attribute(key)
        return payload


@dataclass(frozen=True, slots=True)
class ImposterMarker:
    """Sentinel card shown to imposters when no decoy is dealt."""

    name: str = "IMPOSTER"

    def to_payload(self) -> Dict[str, Any]:
        return {"name": self.name, "isImposter": True}


IMPOSTER_MARKER = ImposterMarker()


def parse_rows(rows: Sequence[Mapping[str, Optional[str]]]) -> List[CatalogItem]:
    """Build catalog items from CSV dict rows, defaulting blank attributes to ``none``."""

    items: List[CatalogItem] = []
    seen: set[str] = set()
    for line_no, row in enumerate(rows, start=2):
        name = (row.get("name") or "").strip()
        if not name:
            raise ValueError(f"Row {line_no} has no name")
        if name in seen:
            raise ValueError(f"Duplicate item name {name!r} on row {line_no}")
        seen.add(name)
        attributes = {key: (row.get(key) or "").strip() or NONE_VALUE for key in ATTRIBUTES}
        items.append(CatalogItem(name=name, attributes=attributes))
    return items


class Catalog:
    """Lazily parses the item table and caches it for the process lifetime."""

    def __init__(
        self,
        path: Path | str = DEFAULT_CATALOG_PATH,
        *,
        items: Optional[Sequence[CatalogItem]] = None,
    ) -> None:
        """Point at a CSV source, or pass ``items`` to skip file access entirely."""
        self.path = Path(path)
        self._items: Optional[Tuple[CatalogItem, ...]] = tuple(items) if items is not None else None
        self.load_error: Optional[str] = None

    @classmethod
    def from_items(cls, items: Sequence[CatalogItem]) -> "Catalog":
        return cls("<memory>", items=items)

    def load(self) -> Tuple[CatalogItem, ...]:
        """Return the cached items, parsing the source on first use.

        An unreadable or malformed source yields an empty tuple and sets
        :attr:`load_error`; callers must treat an empty catalog as fatal
        for game start.
        """

        if self._items is not None:
            return self._items

        try:
            with self.path.open(newline="", encoding="utf-8") as handle:
                reader = csv.DictReader(handle)
                missing = [key for key in ("name", *ATTRIBUTES) if key not in (reader.fieldnames or [])]
                if missing:
                    raise ValueError(f"Missing columns: {', '.join(missing)}")
                items = parse_rows(list(reader))
        except (OSError, ValueError, csv.Error) as exc:
            self.load_error = str(exc)
            LOGGER.error("catalog.load_failed", path=str(self.path), error=str(exc))
            return tuple()

        self._items = tuple(items)
        self.load_error = None
        LOGGER.info("catalog.loaded", path=str(self.path), items=len(self._items))
        return self._items

    def names(self) -> List[str]:
        return sorted(item.name for item in self.load())

    def get(self, name: str) -> Optional[CatalogItem]:
        for item in self.load():
            if item.name == name:
                return item
        return None

    def random_item(self, rng: random.Random) -> CatalogItem:
        items = self.load()
        if not items:
            raise CatalogLoadError(self.load_error or "Catalog is empty")
        return rng.choice(items)

    def __len__(self) -> int:
        return len(self.load())
