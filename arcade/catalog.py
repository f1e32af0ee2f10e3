from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

logger = logging.getLogger(__name__)


class Currency(StrEnum):
    coins = "coins"  # soft currency
    gems = "gems"  # premium currency


class CatalogLoadError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class CatalogItem:
    item_id: str
    name: str
    description: str
    price: int
    currency: Currency
    available: bool = True


def _slug_id(s: str) -> str:
    s = s.strip().casefold()
    s = re.sub(r"[^a-z0-9]+", "-", s)
    return s.strip("-")


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "y"}


@dataclass(frozen=True, slots=True)
class Catalog:
    """Static shop catalog.

    Items are kept in file order; `list_available` is what the shop page shows.
    """

    items: tuple[CatalogItem, ...]
    _by_id: dict[str, CatalogItem]

    @staticmethod
    def from_items(items: list[CatalogItem]) -> "Catalog":
        by_id: dict[str, CatalogItem] = {}
        for item in items:
            if item.item_id in by_id:
                raise CatalogLoadError(f"Duplicate catalog item id: {item.item_id}")
            if item.price <= 0:
                raise CatalogLoadError(f"Catalog item {item.item_id} must have a positive price")
            by_id[item.item_id] = item
        return Catalog(items=tuple(items), _by_id=by_id)

    def get(self, item_id: str) -> CatalogItem | None:
        return self._by_id.get(item_id)

    def list_available(self) -> list[CatalogItem]:
        return [i for i in self.items if i.available]

    def __len__(self) -> int:
        return len(self.items)


def load_catalog_csv(path: Path) -> Catalog:
    try:
        with path.open(encoding="utf-8-sig", newline="") as f:
            rows = [[c.strip() for c in row] for row in csv.reader(f)]
    except FileNotFoundError as e:
        raise CatalogLoadError(f"Catalog file not found: {path}") from e

    rows = [row for row in rows if any(row)]
    if not rows:
        raise CatalogLoadError(f"Empty catalog CSV: {path}")

    header = [c.casefold() for c in rows[0]]
    expected = ["id", "name", "description", "price", "currency", "available"]
    if header[: len(expected)] != expected:
        raise CatalogLoadError(f"Unexpected header in {path}: {rows[0]}")

    items: list[CatalogItem] = []
    for lineno, row in enumerate(rows[1:], start=2):
        if len(row) < len(expected):
            raise CatalogLoadError(f"{path}:{lineno}: expected {len(expected)} columns")
        rid, name, description, price, currency, available = row[: len(expected)]
        if not name:
            continue
        try:
            items.append(
                CatalogItem(
                    item_id=rid or _slug_id(name),
                    name=name,
                    description=description,
                    price=int(price),
                    currency=Currency(currency.casefold()),
                    available=_parse_bool(available),
                )
            )
        except ValueError as e:
            raise CatalogLoadError(f"{path}:{lineno}: {e}") from e

    return Catalog.from_items(items)


def _fallback_catalog() -> Catalog:
    return Catalog.from_items(
        [
            CatalogItem("avatar-frame-gold", "Gold avatar frame", "A shiny frame for your profile", 250, Currency.coins),
            CatalogItem("chat-color-neon", "Neon chat color", "Make your chat messages glow", 150, Currency.coins),
            CatalogItem("xp-booster", "XP booster", "Double xp for the next hour", 5, Currency.gems),
            CatalogItem("vip-badge", "VIP badge", "Show everyone who's boss", 50, Currency.gems),
        ]
    )


def load_catalog(*, root: Path, strict: bool = False) -> Catalog:
    """Load `assets/catalog.csv` under `root`.

    Falls back to a small built-in catalog when the file is missing, unless
    `strict` is set. A file that exists but does not parse always raises.
    """

    path = root / "assets" / "catalog.csv"
    if not path.exists() and not strict:
        logger.warning("No catalog at %s; using built-in catalog", path)
        return _fallback_catalog()

    catalog = load_catalog_csv(path)

    logger.info("Loaded %d catalog items", len(catalog))
    return catalog


_CATALOG: Catalog | None = None


def init_catalog(*, root: Path, strict: bool = False) -> Catalog:
    """Load the catalog once and cache it; later calls return the cached instance."""

    global _CATALOG
    if _CATALOG is None:
        _CATALOG = load_catalog(root=root, strict=strict)
    return _CATALOG


def reset_catalog_for_tests() -> None:
    global _CATALOG
    _CATALOG = None


def get_catalog() -> Catalog:
    if _CATALOG is None:
        raise RuntimeError("Catalog not initialized. Call init_catalog() at startup.")
    return _CATALOG
