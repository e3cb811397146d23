"""
Tariff catalog: immutable TARDOC reference data with lookup and search.

The module-level functions operate on the built-in catalog; tests and
callers with their own reference data construct a TariffCatalog directly.
"""

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.tariff.constants import TARDOC_ITEMS


@dataclass(frozen=True)
class TariffItem:
    code: str
    main_chapter: str
    description: str
    description_fr: str
    description_de: str
    tax_points: Decimal
    technical_tax_points: Decimal
    medical_tax_points: Decimal
    duration_minutes: int
    requires_qualification: Optional[str] = None
    is_active: bool = True

    @property
    def display_name(self) -> str:
        return self.description

    @classmethod
    def from_dict(cls, raw: dict) -> "TariffItem":
        return cls(
            code=raw["code"],
            main_chapter=raw["main_chapter"],
            description=raw["description"],
            description_fr=raw.get("description_fr", raw["description"]),
            description_de=raw.get("description_de", raw["description"]),
            tax_points=Decimal(str(raw["tax_points"])),
            technical_tax_points=Decimal(str(raw.get("technical_tax_points", "0"))),
            medical_tax_points=Decimal(str(raw.get("medical_tax_points", "0"))),
            duration_minutes=int(raw.get("duration_minutes", 0)),
            requires_qualification=raw.get("requires_qualification"),
            is_active=raw.get("is_active", True),
        )


class TariffCatalog:
    """
    Read-only collection of TariffItems keyed by code.

    search() returns a generator: each call re-scans the items, so a query
    can be repeated without any cursor state carried between calls.
    """

    def __init__(self, items: Iterable[TariffItem]):
        self._items: tuple[TariffItem, ...] = tuple(items)
        self._by_code = {item.code.upper(): item for item in self._items}

    @classmethod
    def from_constants(cls) -> "TariffCatalog":
        return cls(TariffItem.from_dict(raw) for raw in TARDOC_ITEMS)

    def __len__(self) -> int:
        return len(self._items)

    def lookup(self, code: str) -> Optional[TariffItem]:
        if not code:
            return None
        return self._by_code.get(code.strip().upper())

    def search(self, query: str = "") -> Iterator[TariffItem]:
        needle = (query or "").strip().lower()
        for item in self._items:
            if not item.is_active:
                continue
            if not needle or _matches(item, needle):
                yield item

    def by_chapter(self, main_chapter: str) -> list[TariffItem]:
        return [
            item
            for item in self._items
            if item.is_active and item.main_chapter == main_chapter
        ]


def _matches(item: TariffItem, needle: str) -> bool:
    return any(
        needle in field.lower()
        for field in (
            item.code,
            item.description,
            item.description_fr,
            item.description_de,
        )
    )


# Built-in catalog
CATALOG = TariffCatalog.from_constants()


def lookup(code: str) -> Optional[TariffItem]:
    return CATALOG.lookup(code)


def search(query: str = "") -> Iterator[TariffItem]:
    return CATALOG.search(query)


def items_by_chapter(main_chapter: str) -> list[TariffItem]:
    return CATALOG.by_chapter(main_chapter)
