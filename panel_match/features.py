"""
Keypoint and descriptor extraction.

A DescriptorSet is the per-image record the matcher works on: keypoints,
one descriptor row per keypoint, the decoded pixels (kept for rendering)
and the source path. It owns those buffers and drops them on release(),
so a long directory scan never keeps more than the current candidate and
the ranked matches alive.

Extractors are interchangeable behind FeatureExtractor; the engine only
ever calls extract().
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import cv2
import numpy as np

from .errors import ExtractionError, PanelMatchError
from .preprocessing import read_image, to_gray_uint8

logger = logging.getLogger(__name__)

DEFAULT_FEATURES = int(os.environ.get("PANEL_MATCH_FEATURES", "2000"))

# ORB descriptors are 32 bytes (256 bits)
ORB_DESCRIPTOR_BYTES = 32


@dataclass
class DescriptorSet:
    """Keypoints, descriptors and pixels extracted from one image."""

    keypoints: List[cv2.KeyPoint]
    descriptors: np.ndarray
    image: Optional[np.ndarray]
    identity: str
    released: bool = field(default=False, init=False)

    def __post_init__(self):
        if len(self.keypoints) != len(self.descriptors):
            raise ValueError(
                f"{self.identity}: {len(self.keypoints)} keypoints but "
                f"{len(self.descriptors)} descriptors"
            )

    def __len__(self):
        return len(self.keypoints)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def release(self):
        """Drop pixel and descriptor buffers. Safe to call more than once."""
        if self.released:
            return
        self.image = None
        # a fresh array, not a slice, so the original buffer is freed
        self.descriptors = np.empty(
            (0,) + self.descriptors.shape[1:], dtype=self.descriptors.dtype
        )
        self.keypoints = []
        self.released = True


class FeatureExtractor(ABC):
    """Produces a DescriptorSet from a decoded image."""

    name = "base"

    def __init__(self, max_features: int = DEFAULT_FEATURES):
        self.max_features = max_features

    @abstractmethod
    def detect_and_compute(self, gray: np.ndarray):
        """Return (keypoints, descriptors) for a uint8 grayscale image."""

    def extract(self, image: np.ndarray, identity: str = "<memory>") -> DescriptorSet:
        """
        Extract keypoints and descriptors from a decoded image.

        Args:
            image: Decoded pixel matrix (uint8 or float32).
            identity: Source path or other identifier for logging.

        Returns:
            DescriptorSet owning the image and its features.

        Raises:
            ExtractionError: If the detector fails.
        """
        try:
            gray = to_gray_uint8(image)
            keypoints, descriptors = self.detect_and_compute(gray)
        except PanelMatchError:
            raise
        except cv2.error as e:
            raise ExtractionError(f"Feature extraction failed for {identity}: {e}") from e

        keypoints = list(keypoints or [])
        if descriptors is None:
            descriptors = np.empty((0, ORB_DESCRIPTOR_BYTES), dtype=np.uint8)
            keypoints = []

        logger.debug(f"Extracted {len(keypoints)} features from {identity}")
        return DescriptorSet(keypoints, descriptors, image, identity)

    def load(self, path: str) -> DescriptorSet:
        """Read, decode and extract a file in one step."""
        return self.extract(read_image(path), identity=path)


class ORBExtractor(FeatureExtractor):
    """CPU ORB detector. Each thread gets its own cv2.ORB instance."""

    name = "orb"

    def __init__(self, max_features: int = DEFAULT_FEATURES):
        super().__init__(max_features)
        self._local = threading.local()

    @property
    def orb(self):
        orb = getattr(self._local, "orb", None)
        if orb is None:
            orb = self._local.orb = cv2.ORB_create(nfeatures=self.max_features)
        return orb

    def detect_and_compute(self, gray):
        return self.orb.detectAndCompute(gray, None)


class CudaORBExtractor(FeatureExtractor):
    """ORB on a CUDA device. Needs an OpenCV build with CUDA support."""

    name = "orb-cuda"

    def __init__(self, max_features: int = DEFAULT_FEATURES):
        super().__init__(max_features)
        try:
            devices = cv2.cuda.getCudaEnabledDeviceCount()
        except (AttributeError, cv2.error):
            devices = 0
        if devices < 1:
            raise ExtractionError("No CUDA device available for ORB extraction")
        self.orb = cv2.cuda_ORB.create(nfeatures=max_features)

    def detect_and_compute(self, gray):
        gpu_image = cv2.cuda_GpuMat()
        gpu_image.upload(gray)
        keypoints, descriptors = self.orb.detectAndCompute(gpu_image, None)
        if isinstance(descriptors, cv2.cuda_GpuMat):
            descriptors = descriptors.download()
        return keypoints, descriptors


EXTRACTORS = {
    ORBExtractor.name: ORBExtractor,
    CudaORBExtractor.name: CudaORBExtractor,
}


def create_extractor(name: str = "orb", max_features: int = DEFAULT_FEATURES) -> FeatureExtractor:
    """Build an extractor by name ("orb" or "orb-cuda")."""
    try:
        cls = EXTRACTORS[name]
    except KeyError:
        raise ValueError(
            f"Unknown extractor '{name}', expected one of {sorted(EXTRACTORS)}"
        ) from None
    return cls(max_features)
