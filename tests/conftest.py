"""Shared test fixtures for panel matching tests."""

import numpy as np
import cv2
import pytest

from panel_match.features import DescriptorSet


def make_noise_image(seed, size=320):
    """Smoothed random noise: plenty of distinct ORB keypoints."""
    rng = np.random.RandomState(seed)
    img = rng.randint(0, 256, (size, size), dtype=np.uint8)
    return cv2.GaussianBlur(img, (3, 3), 0)


def write_image(path, image):
    assert cv2.imwrite(str(path), image)
    return str(path)


def make_descriptor_set(descriptors, identity="synthetic", keypoints=None):
    """DescriptorSet over random keypoints for the given descriptor rows."""
    if keypoints is None:
        rng = np.random.RandomState(len(descriptors))
        keypoints = [
            cv2.KeyPoint(float(x), float(y), 31.0, 0.0)
            for x, y in rng.uniform(0, 300, (len(descriptors), 2))
        ]
    return DescriptorSet(keypoints, descriptors, None, identity)


@pytest.fixture
def query_image():
    return make_noise_image(7)


@pytest.fixture
def unrelated_image():
    return make_noise_image(1234)


@pytest.fixture
def flat_image():
    """Uniform gray: no keypoints at all."""
    return np.full((200, 200), 128, dtype=np.uint8)


@pytest.fixture
def binary_descriptors():
    rng = np.random.RandomState(42)
    return rng.randint(0, 256, (200, 32), dtype=np.uint8)


@pytest.fixture
def float_descriptors():
    rng = np.random.RandomState(42)
    return rng.rand(100, 64).astype(np.float32)


@pytest.fixture
def scan_dir(tmp_path, query_image, flat_image):
    """
    Ten candidates; only the three derived from the query can score.

        copy.png     byte-identical to the query
        rotated.png  query rotated 90 degrees
        shifted.png  query shifted by 12 px
        flat_*.png   no keypoints (4 files)
        broken.jpg   not an image
        tiny.png     smaller than the ORB border, no keypoints
        empty.bmp    zero bytes
    """
    directory = tmp_path / "scans"
    directory.mkdir()

    query_path = write_image(tmp_path / "query.png", query_image)
    write_image(directory / "copy.png", query_image)
    write_image(directory / "rotated.png", cv2.rotate(query_image, cv2.ROTATE_90_CLOCKWISE))
    write_image(directory / "shifted.png", np.roll(query_image, 12, axis=1))
    for i in range(4):
        write_image(directory / f"flat_{i}.png", flat_image)
    (directory / "broken.jpg").write_bytes(b"definitely not a jpeg")
    write_image(directory / "tiny.png", make_noise_image(3, size=20))
    (directory / "empty.bmp").write_bytes(b"")
    (directory / "notes.txt").write_text("ignored")

    return query_path, str(directory)
