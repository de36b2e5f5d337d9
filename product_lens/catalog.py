"""
Catalog Store boundary and search-page helpers.

The storefront keeps products in a hosted backend. Visual search only
needs to list them, so the store is reduced to a single call. Text search
and result sorting live here too, since the search page mixes both modes.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

SORT_MODES = ("similarity", "price-low", "price-high", "name")


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float = 0.0
    image_url: Optional[str] = None
    category: Optional[str] = None
    similarity: Optional[float] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Product":
        """
        Build a Product from a store row.

        Accepts the backend's column names, including the joined
        ``categories: {"name": ...}`` object.
        """
        category = record.get("category")
        joined = record.get("categories")
        if category is None and isinstance(joined, dict):
            category = joined.get("name")

        return cls(
            id=str(record["id"]),
            name=record.get("name", ""),
            price=float(record.get("price") or 0.0),
            image_url=record.get("image_url") or None,
            category=category,
        )


class CatalogStore(ABC):
    """Read access to the product catalog."""

    @abstractmethod
    def list_products(self) -> List[Product]:
        """Return every product, each id at most once."""


class InMemoryCatalogStore(CatalogStore):
    def __init__(self, products: Iterable[Product]):
        self._products = list(products)

    def list_products(self) -> List[Product]:
        return list(self._products)


class JsonCatalogStore(CatalogStore):
    """
    Catalog backed by a JSON array of product rows on disk.

    The file is read on every call so edits show up without a restart.
    Rows repeating an earlier id are dropped.
    """

    def __init__(self, path: str):
        self.path = path

    def list_products(self) -> List[Product]:
        with open(self.path, "r", encoding="utf-8") as f:
            records = json.load(f)

        products = []
        seen = set()
        for record in records:
            product = Product.from_record(record)
            if product.id in seen:
                logger.warning(f"Duplicate product id {product.id} in {self.path}")
                continue
            seen.add(product.id)
            products.append(product)

        return products


def text_search(products: Iterable[Product], query: str) -> List[Product]:
    """Case-insensitive substring match on product name. Every hit scores 1.0."""
    needle = query.lower()
    return [
        replace(p, similarity=1.0)
        for p in products
        if needle in p.name.lower()
    ]


def sort_products(products: Iterable[Product], sort_by: str = "similarity") -> List[Product]:
    """
    Sort search results for display.

    Args:
        products: Products, optionally carrying a similarity score.
        sort_by: One of SORT_MODES.

    Returns:
        New sorted list. Sorting is stable.
    """
    items = list(products)
    if sort_by == "price-low":
        items.sort(key=lambda p: p.price)
    elif sort_by == "price-high":
        items.sort(key=lambda p: p.price, reverse=True)
    elif sort_by == "name":
        items.sort(key=lambda p: p.name.lower())
    elif sort_by == "similarity":
        items.sort(key=lambda p: p.similarity or 0.0, reverse=True)
    else:
        raise ValueError(f"Unknown sort mode {sort_by!r}, expected one of {SORT_MODES}")
    return items
