"""
Image preprocessing for the feature extractor.

Every image, whether a user upload or a fetched product photo, is brought
to the same 224x224 RGB geometry before it reaches the backbone. Aspect
ratio is preserved and the margins are painted white so the model sees a
consistent background instead of stretched or transparent pixels.
"""

import logging

import cv2
import numpy as np

from .errors import InferenceFailed, RenderingUnavailable

logger = logging.getLogger(__name__)

# Input geometry expected by the ImageNet backbones
CANVAS_SIZE = 224
BACKGROUND = (255, 255, 255)


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """Ensure image is uint8 RGB with exactly three channels."""
    if image_np.dtype == np.uint16:
        # 16-bit images keep their high byte
        image_np = (image_np >> 8).astype(np.uint8)
    elif image_np.dtype != np.uint8:
        if image_np.size and image_np.max() <= 1.0:
            image_np = (image_np * 255).astype(np.uint8)
        else:
            image_np = np.clip(image_np, 0, 255).astype(np.uint8)

    if image_np.ndim == 2:
        image_np = np.stack([image_np] * 3, axis=-1)
    elif image_np.ndim == 3 and image_np.shape[2] == 4:
        image_np = image_np[:, :, :3]
    elif image_np.ndim == 3 and image_np.shape[2] == 1:
        image_np = np.repeat(image_np, 3, axis=2)

    return image_np


def compute_placement(width: int, height: int, size: int = CANVAS_SIZE):
    """
    Compute where a width x height image lands on a square canvas.

    Args:
        width: Source image width in pixels.
        height: Source image height in pixels.
        size: Canvas edge length.

    Returns:
        Tuple of (x, y, scaled_width, scaled_height). The scaled image is
        centred, so x and y are the letterbox margins.
    """
    scale = min(size / width, size / height)
    scaled_w = max(1, min(size, int(round(width * scale))))
    scaled_h = max(1, min(size, int(round(height * scale))))
    x = (size - scaled_w) // 2
    y = (size - scaled_h) // 2
    return x, y, scaled_w, scaled_h


def letterbox(image_np: np.ndarray, size: int = CANVAS_SIZE) -> np.ndarray:
    """
    Fit an image onto a white square canvas without cropping.

    Process:
        1. Normalize to uint8 RGB
        2. Scale uniformly by min(size/w, size/h)
        3. Paste the scaled image centred on a white size x size canvas

    Args:
        image_np: Decoded image of arbitrary dimensions.
        size: Canvas edge length (224 for the supported backbones).

    Returns:
        New uint8 array of shape (size, size, 3).

    Raises:
        InferenceFailed: If the image has no pixels.
        RenderingUnavailable: If the canvas cannot be allocated or drawn.
    """
    if image_np is None or image_np.ndim < 2 or image_np.shape[0] == 0 or image_np.shape[1] == 0:
        raise InferenceFailed("Image has no pixels")

    image_np = normalize_image(image_np)
    h, w = image_np.shape[:2]
    x, y, scaled_w, scaled_h = compute_placement(w, h, size)

    # Shrinking uses area interpolation, enlarging uses bilinear
    interpolation = cv2.INTER_AREA if scaled_w < w else cv2.INTER_LINEAR

    try:
        canvas = np.empty((size, size, 3), dtype=np.uint8)
        canvas[:] = BACKGROUND
        resized = cv2.resize(image_np, (scaled_w, scaled_h), interpolation=interpolation)
        canvas[y:y + scaled_h, x:x + scaled_w] = resized
    except (cv2.error, MemoryError, ValueError) as e:
        logger.error(f"Canvas rendering failed for {w}x{h} image: {e}")
        raise RenderingUnavailable(f"Failed to draw image onto canvas: {e}") from e

    return canvas
