"""
Similarity scoring between embeddings.

Cosine similarity compares the direction of two vectors and ignores
their magnitude, so brightness or contrast changes that scale the whole
logit vector do not move the score much. The result is bounded to
[-1, 1].
"""

import logging

import numpy as np

from .errors import DimensionMismatch

logger = logging.getLogger(__name__)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Compute the cosine similarity of two embeddings.

    If either vector has zero norm the result is defined as 0.0 rather
    than NaN.

    Args:
        a: First embedding.
        b: Second embedding, same length as a.

    Returns:
        Similarity in [-1, 1].

    Raises:
        DimensionMismatch: If the embeddings differ in length.
        ValueError: If either embedding has non-finite values.
    """
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)

    if a.shape[0] != b.shape[0]:
        raise DimensionMismatch(a.shape[0], b.shape[0])

    if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
        raise ValueError("Embedding contains NaN or infinite values")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm_a * norm_b))

    # Rounding can push |cos| a hair past 1
    return max(-1.0, min(1.0, similarity))
