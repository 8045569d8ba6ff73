"""
Descriptor signatures as plain float vectors.

Used for the diagnostic dump: each descriptor row becomes a float list
(uint8 cells widened, float32 read as-is), optionally L2-normalized, and
the whole set is written as JSON.
"""

import json
import logging
from typing import Tuple

import numpy as np

from .errors import EmptyMatrixError
from .features import FeatureExtractor
from .preprocessing import ensure_supported_depth

logger = logging.getLogger(__name__)

SIZE_SUFFIXES = ("B", "KB", "MB", "GB", "TB")
FLOAT_BYTES = 4


def matrix_to_vectors(matrix: np.ndarray, normalize: bool = False) -> np.ndarray:
    """
    Convert a descriptor matrix into float32 row vectors.

    Raises:
        UnsupportedDepthError: If the matrix is not uint8 or float32.
    """
    ensure_supported_depth(matrix)
    if matrix.size == 0:
        return np.empty((0, matrix.shape[1] if matrix.ndim == 2 else 0), dtype=np.float32)

    vectors = matrix.reshape(matrix.shape[0], -1).astype(np.float32)
    if normalize:
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        vectors = np.divide(vectors, norms, out=np.zeros_like(vectors), where=norms > 0)
    return vectors


def generate_signatures(extractor: FeatureExtractor,
                        image: np.ndarray,
                        normalize: bool = True) -> np.ndarray:
    """Extract descriptors from an image and return them as vectors."""
    with extractor.extract(image) as features:
        if len(features) == 0:
            raise EmptyMatrixError("No features detected in image")
        return matrix_to_vectors(features.descriptors, normalize)


def dump_signatures(path: str, vectors: np.ndarray) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(vectors.tolist(), f)


def format_bytes(size: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'."""
    value = float(size)
    i = 0
    while value >= 1024 and i < len(SIZE_SUFFIXES) - 1:
        value /= 1024.0
        i += 1
    return f"{value:.2f}".rstrip("0").rstrip(".") + f" {SIZE_SUFFIXES[i]}"


def signature_footprint(vectors: np.ndarray, copies: int = 8_000_000) -> Tuple[str, str]:
    """Formatted size of one signature set and of `copies` of them."""
    memory = int(vectors.size) * FLOAT_BYTES
    return format_bytes(memory), format_bytes(memory * copies)
