"""
Image decoding and normalization.

Turns raw file bytes into a single-channel pixel matrix suitable for
keypoint detection. Only two pixel depths are understood downstream:
8-bit unsigned and 32-bit floating point.
"""

import logging

import cv2
import numpy as np

from .errors import DecodeError, EmptyMatrixError, UnsupportedDepthError

logger = logging.getLogger(__name__)

SUPPORTED_DEPTHS = (np.uint8, np.float32)


def ensure_supported_depth(matrix: np.ndarray) -> np.ndarray:
    """Raise UnsupportedDepthError unless the matrix is uint8 or float32."""
    if matrix.dtype not in SUPPORTED_DEPTHS:
        raise UnsupportedDepthError(matrix.dtype)
    return matrix


def decode(data: bytes) -> np.ndarray:
    """
    Decode image bytes (PNG, JPEG, BMP, TIFF, WebP) into a grayscale matrix.

    Args:
        data: Raw encoded image bytes.

    Returns:
        2-D uint8 matrix.

    Raises:
        DecodeError: If the bytes are not a readable image.
        EmptyMatrixError: If decoding produced no pixels.
    """
    if not data:
        raise EmptyMatrixError("No image data to decode")

    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
    except cv2.error as e:
        raise DecodeError(f"Failed to decode image data: {e}") from e

    if image is None:
        raise DecodeError("Failed to decode image data")
    if image.size == 0:
        raise EmptyMatrixError("Decoded image is empty")

    return image


def read_image(path: str) -> np.ndarray:
    """Read and decode an image file. OSError propagates to the caller."""
    with open(path, "rb") as f:
        data = f.read()
    try:
        return decode(data)
    except DecodeError:
        logger.debug(f"Error while decoding {path}")
        raise


def to_gray_uint8(image: np.ndarray) -> np.ndarray:
    """
    Convert a decoded matrix into the single-channel uint8 form ORB expects.

    Float32 images are assumed to be in [0, 1] when their maximum does
    not exceed 1, otherwise in [0, 255].
    """
    if image.size == 0:
        raise EmptyMatrixError("Image is empty")
    ensure_supported_depth(image)

    if image.dtype == np.float32:
        scale = 255.0 if image.max() <= 1.0 else 1.0
        image = np.clip(image * scale, 0, 255).astype(np.uint8)

    if image.ndim == 3:
        if image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            image = image[:, :, 0]

    return image
