"""
Exception taxonomy for visual search.

Validation and availability errors are meant to be shown to the user as-is.
Per-item catalog failures are swallowed by the scanner. Anything unexpected
during a search is wrapped in SearchFailed with the original chained.
"""


class VisualSearchError(Exception):
    """Base class for all visual search errors."""


class InvalidUpload(VisualSearchError):
    """The uploaded file has a disallowed type or is too large."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ModelUnavailable(VisualSearchError):
    """The numerical backbone or its pretrained weights could not be obtained."""


class InferenceFailed(VisualSearchError):
    """A single image could not be decoded or scored."""


class PerItemExtractionFailed(InferenceFailed):
    """A catalog product image failed during the scan. Never fatal."""

    def __init__(self, product_id: str, cause: Exception):
        super().__init__(f"Failed to process image for product {product_id}: {cause}")
        self.product_id = product_id
        self.cause = cause


class QueryExtractionFailed(VisualSearchError):
    """The uploaded query image could not be turned into an embedding."""


class RenderingUnavailable(VisualSearchError):
    """The offscreen canvas used for preprocessing could not be acquired."""


class SearchFailed(VisualSearchError):
    """Generic pipeline failure. The underlying message is kept for diagnostics."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable
