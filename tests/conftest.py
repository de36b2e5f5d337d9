"""Shared test fixtures for visual search tests."""

import cv2
import numpy as np
import pytest

from product_lens.catalog import InMemoryCatalogStore, Product
from product_lens.errors import InferenceFailed
from product_lens.extractor import FeatureExtractor, make_embedding
from product_lens.image_source import UploadedImage

RED = (200, 30, 30)
GREEN = (30, 180, 30)
BLUE = (30, 30, 200)


def solid_image(color, width=200, height=200):
    """Generate a single-color RGB image."""
    img = np.zeros((height, width, 3), dtype=np.uint8)
    img[:] = color
    return img


def encode_png(image_rgb):
    """Encode an RGB array as PNG bytes."""
    ok, buffer = cv2.imencode(".png", cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return buffer.tobytes()


class CenterColorExtractor(FeatureExtractor):
    """
    Cheap stand-in for the CNN: the embedding is the canvas centre pixel,
    shifted so that different saturated colors point in different
    directions. Identical colors score 1.0, red/green/blue score below 0.
    """

    def __init__(self, available=True):
        self.available = available
        self.calls = 0
        self.availability_checks = 0

    def is_available(self):
        self.availability_checks += 1
        return self.available

    def extract(self, image_np):
        self.calls += 1
        center = image_np[image_np.shape[0] // 2, image_np.shape[1] // 2]
        return make_embedding(center.astype(np.float32) - 127.5)


class RecordingFetch:
    """Fetch stand-in serving images from a dict and recording every URL."""

    def __init__(self, images):
        self.images = images
        self.urls = []

    def __call__(self, url):
        self.urls.append(url)
        image = self.images.get(url)
        if image is None:
            raise InferenceFailed(f"Unsupported or corrupt image data at {url}")
        return image


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = RED
    return img


@pytest.fixture
def wide_image():
    """Generate a 400x100 solid blue banner."""
    return solid_image(BLUE, width=400, height=100)


@pytest.fixture
def red_upload():
    return UploadedImage("query.png", "image/png", encode_png(solid_image(RED)))


@pytest.fixture
def extractor():
    return CenterColorExtractor()


@pytest.fixture
def catalog_images():
    return {
        "https://cdn.example.com/p1.png": solid_image(RED),
        "https://cdn.example.com/p2.png": solid_image(GREEN),
        "https://cdn.example.com/p3.png": solid_image(RED, width=300, height=150),
        "https://cdn.example.com/p4.png": solid_image(BLUE),
    }


@pytest.fixture
def products():
    return [
        Product("p1", "Red Mug", 12.0, "https://cdn.example.com/p1.png", "Kitchen"),
        Product("p2", "Green Lamp", 40.0, "https://cdn.example.com/p2.png", "Home"),
        Product("p3", "Red Scarf", 25.0, "https://cdn.example.com/p3.png", "Apparel"),
        Product("p4", "Blue Vase", 30.0, "https://cdn.example.com/p4.png", "Home"),
    ]


@pytest.fixture
def store(products):
    return InMemoryCatalogStore(products)


@pytest.fixture
def fetch(catalog_images):
    return RecordingFetch(catalog_images)
