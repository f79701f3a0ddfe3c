"""
Catalog - immutable product weight profiles loaded once at startup.

catalog.yaml layout:

    products:
      EX90:
        daily_distance: [2, 4, 5]
        usage: [2, 5, 4]
        features: [5, 4, 5, 5, 5, 4]
        style: SUV

Iteration order is file order; the scoring engine relies on it for
tie-breaking.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import yaml

from car_advisor.logger import logger
from car_advisor.models import (
    DAILY_DISTANCE_OPTIONS,
    FEATURE_OPTIONS,
    USAGE_OPTIONS,
    Style,
)

DEFAULT_CATALOG_FILE = Path(__file__).parent / "data" / "catalog.yaml"


class CatalogError(ValueError):
    """Catalog file missing or malformed."""


@dataclass(frozen=True)
class WeightProfile:
    daily_distance_weights: Tuple[float, ...]
    usage_weights: Tuple[float, ...]
    feature_weights: Tuple[float, ...]
    style: Style


class Catalog(Mapping[str, WeightProfile]):
    """Read-only, insertion-ordered mapping product_id -> WeightProfile."""

    def __init__(self, profiles: Mapping[str, WeightProfile]):
        self._profiles = MappingProxyType(dict(profiles))

    def __getitem__(self, product_id: str) -> WeightProfile:
        return self._profiles[product_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._profiles)

    def __len__(self) -> int:
        return len(self._profiles)

    def __repr__(self) -> str:
        return f"Catalog({list(self._profiles)!r})"

    def find(self, product_id: str) -> Optional[str]:
        """Case-insensitive lookup of a product id; returns the canonical id."""
        needle = product_id.strip().lower()
        for known in self._profiles:
            if known.lower() == needle:
                return known
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Catalog":
        products = data.get("products") if isinstance(data, Mapping) else None
        if not isinstance(products, Mapping) or not products:
            raise CatalogError("catalog must define a non-empty 'products' mapping")

        profiles: Dict[str, WeightProfile] = {}
        for product_id, raw in products.items():
            profiles[str(product_id)] = _parse_profile(str(product_id), raw)
        return cls(profiles)


def _parse_weights(product_id: str, raw: Mapping[str, Any], key: str, length: int) -> Tuple[float, ...]:
    values = raw.get(key)
    if not isinstance(values, list) or len(values) != length:
        raise CatalogError(f"{product_id}.{key} must be a list of {length} numbers")
    try:
        return tuple(float(v) for v in values)
    except (TypeError, ValueError) as exc:
        raise CatalogError(f"{product_id}.{key} contains a non-numeric weight") from exc


def _parse_profile(product_id: str, raw: Any) -> WeightProfile:
    if not isinstance(raw, Mapping):
        raise CatalogError(f"{product_id} must be a mapping")
    try:
        style = Style(raw.get("style"))
    except ValueError as exc:
        allowed = ", ".join(s.value for s in Style)
        raise CatalogError(f"{product_id}.style must be one of: {allowed}") from exc
    return WeightProfile(
        daily_distance_weights=_parse_weights(product_id, raw, "daily_distance", DAILY_DISTANCE_OPTIONS),
        usage_weights=_parse_weights(product_id, raw, "usage", USAGE_OPTIONS),
        feature_weights=_parse_weights(product_id, raw, "features", FEATURE_OPTIONS),
        style=style,
    )


def load_catalog(path: Optional[Path] = None) -> Catalog:
    """Load and validate the catalog. Raises CatalogError on any problem."""
    path = Path(path) if path else DEFAULT_CATALOG_FILE
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as exc:
        raise CatalogError(f"cannot read catalog {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise CatalogError(f"invalid YAML in catalog {path}: {exc}") from exc

    catalog = Catalog.from_dict(data)
    logger.info("Catalog loaded", path=str(path), products=len(catalog))
    return catalog
