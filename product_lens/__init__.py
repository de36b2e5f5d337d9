"""
product_lens: Visual product similarity search for the storefront.

Embeds an uploaded photo with a pretrained CNN, embeds catalog product
images the same way, and ranks products by cosine similarity.

Modules:
    engine         VisualSearchEngine orchestrating one search
    scanner        Sequential catalog scan yielding per-product embeddings
    similarity     Cosine similarity and threshold ranking
    backbone       torchvision feature extractor
    extractor      FeatureExtractor interface and lazy model handle
    preprocessing  Letterboxing onto the 224x224 model canvas
    image_source   Upload validation, decoding and image fetching
    catalog        Catalog Store interface, text search and sorting
    errors         Exception taxonomy
"""

from .catalog import CatalogStore, InMemoryCatalogStore, JsonCatalogStore, Product
from .engine import SearchOutcome, SearchProgress, SearchState, VisualSearchEngine
from .image_source import UploadedImage
from .similarity import CatalogEntry, SimilarityResult, cosine_similarity, rank

__version__ = "1.0.0"

__all__ = [
    "CatalogEntry",
    "CatalogStore",
    "InMemoryCatalogStore",
    "JsonCatalogStore",
    "Product",
    "SearchOutcome",
    "SearchProgress",
    "SearchState",
    "SimilarityResult",
    "UploadedImage",
    "VisualSearchEngine",
    "cosine_similarity",
    "rank",
]
