"""
Pretrained CNN backbone for image embeddings.

Loads an ImageNet-pretrained torchvision model with its classification
head replaced by an identity, so the forward pass returns the pooled
penultimate features:

    mobilenet_v2        1280-d (default)
    mobilenet_v3_large   960-d
    resnet50            2048-d

The model is loaded lazily through a ModelHandle, once per extractor.
"""

import os
import logging
from typing import Callable, Optional

import numpy as np
import torch
from torchvision import models

from .errors import InferenceFailed
from .extractor import FeatureExtractor, ModelHandle, make_embedding
from .preprocessing import CANVAS_SIZE

logger = logging.getLogger(__name__)

BACKBONE = os.environ.get("PRODUCT_LENS_BACKBONE", "mobilenet_v2")
DEVICE = os.environ.get("PRODUCT_LENS_DEVICE", "cpu")

# ImageNet normalization (used by pretrained torchvision models)
IMAGENET_MEAN = np.array([0.485, 0.456, 0.406], dtype=np.float32)
IMAGENET_STD = np.array([0.229, 0.224, 0.225], dtype=np.float32)


def _mobilenet_v2() -> torch.nn.Module:
    model = models.mobilenet_v2(weights=models.MobileNet_V2_Weights.IMAGENET1K_V1)
    model.classifier = torch.nn.Identity()
    return model


def _mobilenet_v3_large() -> torch.nn.Module:
    model = models.mobilenet_v3_large(weights=models.MobileNet_V3_Large_Weights.IMAGENET1K_V1)
    model.classifier = torch.nn.Identity()
    return model


def _resnet50() -> torch.nn.Module:
    model = models.resnet50(weights=models.ResNet50_Weights.IMAGENET1K_V2)
    model.fc = torch.nn.Identity()
    return model


BACKBONES = {
    "mobilenet_v2": _mobilenet_v2,
    "mobilenet_v3_large": _mobilenet_v3_large,
    "resnet50": _resnet50,
}


def to_input_tensor(image_np: np.ndarray, device: str = "cpu") -> torch.Tensor:
    """
    Convert a 224x224 RGB uint8 image to a normalized (1, 3, H, W) tensor.

    Raises:
        InferenceFailed: If the array does not have the expected geometry.
    """
    if image_np.shape != (CANVAS_SIZE, CANVAS_SIZE, 3):
        raise InferenceFailed(
            f"Expected {CANVAS_SIZE}x{CANVAS_SIZE}x3 input, got {image_np.shape}"
        )

    scaled = image_np.astype(np.float32) / 255.0
    scaled = (scaled - IMAGENET_MEAN) / IMAGENET_STD
    # HWC -> CHW, then add the batch dimension
    chw = np.ascontiguousarray(scaled.transpose(2, 0, 1))
    return torch.from_numpy(chw).unsqueeze(0).to(device)


class TorchFeatureExtractor(FeatureExtractor):
    """
    Feature extractor backed by a torchvision CNN.

    Args:
        model_name: Key into BACKBONES. Ignored when model_factory is given.
        device: Torch device string ("cpu", "cuda").
        model_factory: Optional zero-argument callable returning a module
            that maps (1, 3, 224, 224) to (1, D). Used to plug in custom
            or fine-tuned backbones.
    """

    def __init__(self,
                 model_name: str = BACKBONE,
                 device: str = DEVICE,
                 model_factory: Optional[Callable[[], torch.nn.Module]] = None):
        self.model_name = model_name
        self.device = device
        self._factory = model_factory
        self._handle = ModelHandle(self._load, name=f"{model_name} backbone")

    @property
    def handle(self) -> ModelHandle:
        return self._handle

    def _load(self) -> torch.nn.Module:
        factory = self._factory
        if factory is None:
            if self.model_name not in BACKBONES:
                raise ValueError(
                    f"Unknown backbone {self.model_name!r}, "
                    f"expected one of {sorted(BACKBONES)}"
                )
            factory = BACKBONES[self.model_name]

        model = factory()
        model = model.to(self.device)
        model.eval()
        return model

    def is_available(self) -> bool:
        return self._handle.is_loadable()

    def extract(self, image_np: np.ndarray) -> np.ndarray:
        model = self._handle.get()
        tensor = to_input_tensor(image_np, device=self.device)

        try:
            with torch.no_grad():
                output = model(tensor)
                values = output.reshape(-1).cpu().numpy()
        except RuntimeError as e:
            raise InferenceFailed(f"Backbone inference failed: {e}") from e
        finally:
            # Drop intermediate tensors before returning
            del tensor

        del output
        return make_embedding(values)
