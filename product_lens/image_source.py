"""
Image sources for visual search.

Two kinds of input reach the pipeline: a file the user uploads (validated
by MIME type and size before anything else happens) and a product image
referenced by URL in the catalog. Both end up as RGB uint8 arrays.
"""

import os
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import requests

from .errors import InferenceFailed, InvalidUpload

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/webp")
MAX_UPLOAD_BYTES = int(float(os.environ.get("PRODUCT_LENS_MAX_UPLOAD_MB", "10")) * 1024 * 1024)
IMAGE_FETCH_TIMEOUT = float(os.environ.get("PRODUCT_LENS_FETCH_TIMEOUT", "20"))

INVALID_TYPE_MESSAGE = "Invalid file type. Please upload a JPEG, PNG, or WebP image."
TOO_LARGE_MESSAGE = "File size too large. Please upload an image smaller than 10MB."


@dataclass(frozen=True)
class UploadedImage:
    """A user-supplied image held in memory."""

    filename: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def validate_upload(upload: UploadedImage, max_bytes: int = MAX_UPLOAD_BYTES) -> None:
    """
    Reject uploads that are not JPEG/PNG/WebP or exceed the size cap.

    The type check runs first, so an oversized PDF reports the type problem.

    Raises:
        InvalidUpload: With a message suitable for showing to the user.
    """
    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidUpload(INVALID_TYPE_MESSAGE)

    if upload.size > max_bytes:
        raise InvalidUpload(TOO_LARGE_MESSAGE)


def decode_image_bytes(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG, PNG, WebP, ...) to an RGB uint8 array.

    Raises:
        InferenceFailed: If the bytes are empty or not a decodable image.
    """
    if not data:
        raise InferenceFailed("Empty image data")

    buffer = np.frombuffer(data, dtype=np.uint8)
    # IMREAD_COLOR always yields 8-bit BGR, with EXIF orientation applied
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise InferenceFailed("Unsupported or corrupt image data")

    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def decode_data_url(url: str) -> bytes:
    """
    Extract the payload of a base64 ``data:image/...;base64,...`` URL.

    Raises:
        InferenceFailed: If the URL is not a base64 image data URL.
    """
    header, sep, payload = url.partition(",")
    if not sep or not header.startswith("data:image/") or not header.endswith(";base64"):
        raise InferenceFailed("Unsupported data URL, expected data:image/...;base64")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InferenceFailed(f"Invalid base64 image data: {e}") from e


def load_image_from_upload(upload: UploadedImage) -> np.ndarray:
    """Uploaded file -> RGB array."""
    return decode_image_bytes(upload.data)


def fetch_image(url: str,
                session: Optional[requests.Session] = None,
                timeout: float = None) -> np.ndarray:
    """
    Fetch a product image and decode it.

    Accepts http(s) URLs, base64 ``data:image/...`` URLs (the hosted
    backend may store inline images), ``file://`` URLs and plain local
    paths. The last two keep seeded catalogs and tests off the network.

    Args:
        url: Remote URL, data URL or filesystem path of the product image.
        session: Optional requests session for connection reuse.
        timeout: Request timeout in seconds. Defaults to IMAGE_FETCH_TIMEOUT.

    Returns:
        RGB uint8 image.

    Raises:
        InferenceFailed: If the image cannot be retrieved or decoded.
    """
    timeout = timeout or IMAGE_FETCH_TIMEOUT

    if url.startswith(("http://", "https://")):
        getter = session or requests
        try:
            response = getter.get(url, timeout=timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise InferenceFailed(f"Could not fetch {url}: {e}") from e
        data = response.content
    elif url.startswith("data:"):
        data = decode_data_url(url)
    else:
        path = url[len("file://"):] if url.startswith("file://") else url
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise InferenceFailed(f"Could not read {url}: {e}") from e

    logger.debug(f"Fetched {len(data)} bytes from {url[:80]}")
    return decode_image_bytes(data)
