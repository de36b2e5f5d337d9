"""
Visual search orchestrator.

Drives one search from upload to ranked results:

    IDLE -> VALIDATING_UPLOAD -> EXTRACTING_QUERY -> SCANNING_CATALOG
         -> RANKING -> DONE

with ERROR reachable from every step. Progress is reported as a
percentage: the first half covers setup and the query image, 50-90 the
catalog scan, and the last 10 ranking.

Only the query extraction and environment problems (model, canvas) are
fatal. Individual catalog images that fail are skipped.
"""

import enum
import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional

import numpy as np

from .catalog import CatalogStore, Product
from .errors import (
    ModelUnavailable,
    QueryExtractionFailed,
    RenderingUnavailable,
    SearchFailed,
    VisualSearchError,
)
from .extractor import FeatureExtractor
from .image_source import UploadedImage, fetch_image, load_image_from_upload, validate_upload
from .preprocessing import letterbox
from .scanner import scan_catalog
from .similarity import CATALOG_THRESHOLD, CatalogEntry, SimilarityResult, rank

logger = logging.getLogger(__name__)

MODEL_UNAVAILABLE_MESSAGE = (
    "Visual search requires PyTorch and torchvision with downloadable "
    "pretrained weights. Install the package dependencies and retry."
)


class SearchState(enum.Enum):
    IDLE = "idle"
    VALIDATING_UPLOAD = "validating_upload"
    EXTRACTING_QUERY = "extracting_query"
    SCANNING_CATALOG = "scanning_catalog"
    RANKING = "ranking"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class SearchProgress:
    percent: float
    status: str
    state: SearchState


@dataclass
class SearchOutcome:
    results: List[SimilarityResult] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)
    summary: str = ""
    scanned: int = 0
    skipped: int = 0


def summarize(count: int) -> str:
    if count == 0:
        return "No similar products found"
    if count == 1:
        return "Found 1 similar product"
    return f"Found {count} similar products"


def join_products(results: List[SimilarityResult], products: List[Product]) -> List[Product]:
    """
    Attach similarity scores to the matching product records.

    Results whose product id is not in the listing are dropped. Order
    follows the results, best match first.
    """
    by_id = {p.id: p for p in products}
    return [
        replace(by_id[r.product_id], similarity=r.score)
        for r in results
        if r.product_id in by_id
    ]


def scan_progress(index: int, total: int) -> float:
    """Progress after scanning catalog item `index` (0-based) of `total`."""
    if total <= 0:
        return 90.0
    return 50.0 + (index / total) * 40.0


class VisualSearchEngine:
    """
    Runs visual searches against a catalog, one at a time.

    Args:
        extractor: Feature extractor used for both query and catalog images.
        store: Catalog Store supplying the products to scan.
        threshold: Minimum cosine similarity for a result.
        fetch: Callable loading a product image URL into an RGB array.
        on_progress: Optional callback receiving SearchProgress updates.
    """

    def __init__(self,
                 extractor: FeatureExtractor,
                 store: CatalogStore,
                 threshold: float = CATALOG_THRESHOLD,
                 fetch: Callable[[str], np.ndarray] = fetch_image,
                 on_progress: Optional[Callable[[SearchProgress], None]] = None):
        self.extractor = extractor
        self.store = store
        self.threshold = threshold
        self.fetch = fetch
        self.on_progress = on_progress

        self._state = SearchState.IDLE
        self._percent = 0.0
        self._cancel_event = threading.Event()
        self._model_unavailable = False

    @property
    def state(self) -> SearchState:
        return self._state

    def cancel(self) -> None:
        """
        Abandon the search in flight (the user removed the uploaded image).

        Advisory: an extraction already running finishes, but its result is
        discarded and run() returns None.
        """
        self._cancel_event.set()

    def _transition(self, state: SearchState, percent: float, status: str) -> None:
        self._state = state
        self._report(percent, status)

    def _report(self, percent: float, status: str) -> None:
        # Never move backwards within a run
        self._percent = max(self._percent, min(percent, 100.0))
        if self.on_progress is not None:
            self.on_progress(SearchProgress(self._percent, status, self._state))

    def _cancelled(self) -> bool:
        if self._cancel_event.is_set():
            logger.info("Visual search cancelled, discarding results")
            self._state = SearchState.IDLE
            self._percent = 0.0
            return True
        return False

    def run(self, upload: UploadedImage) -> Optional[SearchOutcome]:
        """
        Search the catalog for products that look like the uploaded image.

        Args:
            upload: The user's image file.

        Returns:
            SearchOutcome with results best match first, or None if the
            search was cancelled before finishing.

        Raises:
            InvalidUpload: Wrong file type or too large.
            ModelUnavailable: The backbone cannot be loaded in this process.
            QueryExtractionFailed: The uploaded image could not be embedded.
            RenderingUnavailable: The preprocessing canvas is unavailable.
            SearchFailed: Any other failure; safe to retry.
        """
        self._cancel_event = threading.Event()
        self._percent = 0.0

        try:
            return self._run(upload)
        except VisualSearchError:
            self._state = SearchState.ERROR
            raise
        except Exception as e:
            self._state = SearchState.ERROR
            logger.error(f"Visual search error: {e}", exc_info=True)
            raise SearchFailed(f"Failed to perform visual search: {e}") from e

    def _run(self, upload: UploadedImage) -> Optional[SearchOutcome]:
        self._transition(SearchState.VALIDATING_UPLOAD, 0, "Validating image")
        validate_upload(upload)
        self._report(10, "Checking image model")
        self._ensure_model()

        if self._cancelled():
            return None

        self._transition(SearchState.EXTRACTING_QUERY, 20, "Analyzing your image")
        query = self._extract_query(upload)

        if self._cancelled():
            return None

        self._transition(SearchState.SCANNING_CATALOG, 50, "Comparing with products")
        products = self.store.list_products()
        total = len(products)
        entries: List[CatalogEntry] = []
        skipped = 0

        items = scan_catalog(products, self.extractor,
                             fetch=self.fetch, cancel_event=self._cancel_event)
        for index, item in enumerate(items):
            if item.ok:
                entries.append(CatalogEntry(item.product_id, item.embedding))
            else:
                skipped += 1
            if self._cancel_event.is_set():
                break
            self._report(scan_progress(index, total),
                         f"Compared {index + 1} of {total} products")

        if self._cancelled():
            return None

        self._transition(SearchState.RANKING, 90, "Ranking matches")
        results = rank(query, entries, threshold=self.threshold)

        if self._cancelled():
            return None

        matched = join_products(results, products)
        outcome = SearchOutcome(
            results=results,
            products=matched,
            summary=summarize(len(matched)),
            scanned=len(entries),
            skipped=skipped,
        )
        self._transition(SearchState.DONE, 100, outcome.summary)

        logger.info(
            f"Search complete: {total} products, {len(entries)} embedded, "
            f"{skipped} skipped -> {len(results)} results"
        )
        return outcome

    def _ensure_model(self) -> None:
        if self._model_unavailable:
            raise ModelUnavailable(MODEL_UNAVAILABLE_MESSAGE)

        if not self.extractor.is_available():
            # Reported once; later searches fail fast without probing again
            self._model_unavailable = True
            logger.warning("Visual search disabled: image model unavailable")
            raise ModelUnavailable(MODEL_UNAVAILABLE_MESSAGE)

    def _extract_query(self, upload: UploadedImage) -> np.ndarray:
        try:
            image = load_image_from_upload(upload)
            canvas = letterbox(image)
            return self.extractor.extract(canvas)
        except (RenderingUnavailable, ModelUnavailable):
            raise
        except Exception as e:
            raise QueryExtractionFailed(f"Could not analyze the uploaded image: {e}") from e
