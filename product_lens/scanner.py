"""
Sequential catalog scan.

Turns a product list into a stream of (product id, embedding or error)
items. Images go through fetch, letterbox and extraction one at a time
to bound the backbone's peak memory. Progress math is left to the caller.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

import numpy as np

from .catalog import Product
from .errors import ModelUnavailable, PerItemExtractionFailed, RenderingUnavailable
from .extractor import FeatureExtractor
from .image_source import fetch_image
from .preprocessing import letterbox

logger = logging.getLogger(__name__)

SKIP_NO_IMAGE = "no_image"
SKIP_EXTRACTION_FAILED = "extraction_failed"


@dataclass(frozen=True)
class ScanItem:
    product_id: str
    embedding: Optional[np.ndarray] = None
    error: Optional[PerItemExtractionFailed] = None
    skip_reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.embedding is not None


def scan_catalog(products: Iterable[Product],
                 extractor: FeatureExtractor,
                 fetch: Callable[[str], np.ndarray] = fetch_image,
                 cancel_event: Optional[threading.Event] = None) -> Iterator[ScanItem]:
    """
    Embed catalog product images one by one.

    Products without an image and products whose image fails to fetch,
    decode or score are yielded as skipped items, so the consumer sees
    exactly one item per product. RenderingUnavailable and
    ModelUnavailable are not per-item problems and propagate.

    Args:
        products: Products to scan, in catalog order.
        extractor: Feature extractor shared with the query.
        fetch: Callable mapping an image URL to an RGB array.
        cancel_event: When set, the scan stops before the next product.

    Yields:
        ScanItem per product.
    """
    for product in products:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Catalog scan cancelled")
            return

        if not product.image_url:
            logger.debug(f"Skipping product {product.id}: no image")
            yield ScanItem(product.id, skip_reason=SKIP_NO_IMAGE)
            continue

        try:
            image = fetch(product.image_url)
            canvas = letterbox(image)
            embedding = extractor.extract(canvas)
        except (RenderingUnavailable, ModelUnavailable):
            raise
        except Exception as e:
            error = PerItemExtractionFailed(product.id, e)
            logger.warning(str(error))
            yield ScanItem(product.id, error=error, skip_reason=SKIP_EXTRACTION_FAILED)
            continue

        yield ScanItem(product.id, embedding=embedding)
