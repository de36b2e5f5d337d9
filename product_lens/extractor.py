"""
Feature extractor contract and the lazily loaded model handle.

The search engine depends on the FeatureExtractor interface only. Whether
the numerical backbone can actually be loaded is answered by the handle's
availability check, never by inspecting module-level flags.
"""

import enum
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np

from .errors import ModelUnavailable

logger = logging.getLogger(__name__)


def make_embedding(values) -> np.ndarray:
    """
    Build an immutable 1-D float32 embedding.

    The returned array is a private copy with the write flag cleared, so
    callers cannot alter an embedding after it is produced.
    """
    embedding = np.array(values, dtype=np.float32).reshape(-1)
    embedding.setflags(write=False)
    return embedding


class ModelState(enum.Enum):
    UNCHECKED = "unchecked"
    UNAVAILABLE = "unavailable"
    LOADING = "loading"
    READY = "ready"


class ModelHandle:
    """
    Single-flight, thread-safe lazy holder for a loaded model.

    The first caller of get() runs the loader. Callers arriving while the
    load is in flight wait on a condition variable and receive the same
    model. A failed load is final: the handle stays UNAVAILABLE for the
    rest of its lifetime and every caller gets ModelUnavailable.
    """

    def __init__(self, loader: Callable[[], Any], name: str = "model"):
        self._loader = loader
        self._name = name
        self._cond = threading.Condition()
        self._state = ModelState.UNCHECKED
        self._model = None
        self._error: Optional[str] = None

    @property
    def state(self) -> ModelState:
        with self._cond:
            return self._state

    def get(self) -> Any:
        """
        Return the loaded model, loading it on first use.

        Raises:
            ModelUnavailable: If loading failed now or on an earlier call.
        """
        with self._cond:
            while self._state == ModelState.LOADING:
                self._cond.wait()

            if self._state == ModelState.READY:
                return self._model
            if self._state == ModelState.UNAVAILABLE:
                raise ModelUnavailable(self._error)

            self._state = ModelState.LOADING

        # Load outside the lock so waiters block on the condition, not the mutex
        try:
            model = self._loader()
        except Exception as e:
            message = f"Failed to load {self._name}: {e}"
            logger.error(message)
            with self._cond:
                self._state = ModelState.UNAVAILABLE
                self._error = message
                self._cond.notify_all()
            raise ModelUnavailable(message) from e
        except BaseException:
            # Interrupted load (KeyboardInterrupt, SystemExit): let the next caller retry
            with self._cond:
                self._state = ModelState.UNCHECKED
                self._cond.notify_all()
            raise

        with self._cond:
            self._model = model
            self._state = ModelState.READY
            self._cond.notify_all()

        logger.info(f"Loaded {self._name}")
        return model

    def is_loadable(self) -> bool:
        """Return True if the model is (or can be) loaded. Never raises."""
        try:
            self.get()
        except ModelUnavailable:
            return False
        return True

    @property
    def error(self) -> Optional[str]:
        with self._cond:
            return self._error


class FeatureExtractor(ABC):
    """Maps a preprocessed 224x224 RGB image to a fixed-length embedding."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether extraction can run at all in this process."""

    @abstractmethod
    def extract(self, image_np: np.ndarray) -> np.ndarray:
        """
        Compute the embedding for one preprocessed image.

        Raises:
            InferenceFailed: If this particular image cannot be scored.
            ModelUnavailable: If the backbone cannot be loaded.
        """
