"""
Cosine similarity ranking of catalog embeddings against a query.

Everything here is pure: no I/O, inputs are never mutated, and identical
inputs always give identical output. Degenerate vectors (different
lengths, zero norm, NaN/inf) score 0 instead of raising, so one bad
catalog entry can never break a ranking.
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence

import numpy as np

logger = logging.getLogger(__name__)

# Minimum score for catalog search results, and for generic pairwise use
CATALOG_THRESHOLD = float(os.environ.get("PRODUCT_LENS_CATALOG_THRESHOLD", "0.3"))
PAIRWISE_THRESHOLD = float(os.environ.get("PRODUCT_LENS_PAIRWISE_THRESHOLD", "0.5"))


@dataclass(frozen=True)
class CatalogEntry:
    product_id: str
    embedding: np.ndarray


@dataclass(frozen=True)
class SimilarityResult:
    product_id: str
    score: float

    @property
    def match_label(self) -> str:
        """Overlay text for result cards, e.g. "73% match"."""
        return f"{round(max(self.score, 0.0) * 100)}% match"

    def to_dict(self) -> Dict[str, object]:
        return {"productId": self.product_id, "similarityScore": self.score}


def cosine_similarity(a, b) -> float:
    """
    Cosine similarity dot(a, b) / (|a| * |b|).

    Args:
        a: First vector (any 1-D sequence of numbers).
        b: Second vector.

    Returns:
        Similarity in [-1, 1]. Returns 0.0 when the lengths differ, either
        vector is empty or has zero norm, or the result is not finite.
    """
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)

    if a.size == 0 or a.size != b.size:
        return 0.0

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(similarity):
        return 0.0

    # Rounding can push identical vectors a hair past 1.0
    return float(np.clip(similarity, -1.0, 1.0))


def rank(query,
         catalog: Sequence[CatalogEntry],
         threshold: float = CATALOG_THRESHOLD) -> List[SimilarityResult]:
    """
    Score every catalog entry against the query, filter, and sort.

    Entries scoring below the threshold are dropped. The remaining results
    are sorted by descending score; Python's sort is stable, so entries
    with equal scores keep their catalog order.

    Args:
        query: Query embedding.
        catalog: Catalog entries, assumed free of duplicate product ids.
        threshold: Minimum similarity to keep.

    Returns:
        New list of SimilarityResult, best match first.
    """
    scored = [
        SimilarityResult(entry.product_id, cosine_similarity(query, entry.embedding))
        for entry in catalog
    ]
    kept = [result for result in scored if result.score >= threshold]
    kept.sort(key=lambda r: r.score, reverse=True)

    logger.debug(f"Ranked {len(catalog)} entries, {len(kept)} above {threshold}")
    return kept


def find_similar(query,
                 catalog: Sequence[CatalogEntry],
                 threshold: float = PAIRWISE_THRESHOLD) -> List[SimilarityResult]:
    """Generic pairwise similarity lookup with the stricter default threshold."""
    return rank(query, catalog, threshold=threshold)
