"""
Feature extraction: decoded image -> fixed-length embedding.

The embedding is the raw output vector of an image classification
model (1000 class logits for MobileNet-v2). Comparing these vectors
with cosine similarity is enough to tell "same object in frame" from
"something else" for the counting use case.
"""

import logging
import threading
from typing import Optional

import numpy as np

from .backends import InferenceBackend
from .errors import DimensionMismatch, ExtractionError, NotReady
from .preprocessing import to_input_tensor

logger = logging.getLogger(__name__)


def freeze(vector: np.ndarray) -> np.ndarray:
    """Return a read-only 1-D float32 copy of a vector."""
    embedding = np.array(vector, dtype=np.float32).reshape(-1)
    embedding.setflags(write=False)
    return embedding


class FeatureExtractor:
    """
    Turns images into embeddings through a pluggable inference backend.

    Backend calls are serialized: the reference photo can be embedded on
    the caller's thread while the matching loop runs on its own.
    """

    def __init__(self, backend: InferenceBackend, output_length: Optional[int] = None):
        """
        Args:
            backend: Model runtime used for inference.
            output_length: Expected embedding length. Defaults to the
                backend's declared output length.
        """
        self.backend = backend
        self.output_length = int(output_length or backend.output_length)
        self._lock = threading.Lock()

    @property
    def input_size(self):
        return self.backend.input_size

    def is_ready(self) -> bool:
        return self.backend.is_ready()

    def extract(self, image: np.ndarray) -> np.ndarray:
        """
        Compute the embedding of one image.

        Process:
            1. Fail fast if the backend is not ready
            2. Normalize, resize and scale into the model tensor
            3. Run inference
            4. Check the output length and freeze the vector

        Args:
            image: Decoded image (H, W, 3). Not modified.

        Returns:
            Read-only float32 embedding of length output_length.

        Raises:
            NotReady: Backend not initialized.
            ExtractionError: Preprocessing or inference failed, or the
                output has non-finite values.
            DimensionMismatch: Backend returned a vector of the wrong length.
        """
        if not self.backend.is_ready():
            raise NotReady("Inference backend not initialized yet")

        try:
            tensor = to_input_tensor(image, self.input_size)
        except (ValueError, TypeError) as e:
            raise ExtractionError(f"Could not preprocess image: {e}") from e

        with self._lock:
            try:
                output = self.backend.infer(tensor)
            except NotReady:
                raise
            except Exception as e:
                raise ExtractionError(f"Inference failed: {e}") from e

        embedding = freeze(output)
        if embedding.shape[0] != self.output_length:
            raise DimensionMismatch(self.output_length, embedding.shape[0])
        if not np.all(np.isfinite(embedding)):
            raise ExtractionError("Backend produced NaN or infinite values")

        logger.debug(f"Extracted {embedding.shape[0]}d embedding")
        return embedding

    def close(self) -> None:
        self.backend.close()
