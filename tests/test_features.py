"""Tests for DescriptorSet and feature extractors."""

import cv2
import numpy as np
import pytest

from panel_match import features
from panel_match.errors import ExtractionError, UnsupportedDepthError
from panel_match.features import (
    CudaORBExtractor, DescriptorSet, ORBExtractor, create_extractor,
)

from conftest import make_descriptor_set, write_image


class TestDescriptorSet:
    """Tests for the per-image feature record."""

    def test_length_mismatch_rejected(self, binary_descriptors):
        kps = [cv2.KeyPoint(1.0, 1.0, 31.0)]
        with pytest.raises(ValueError):
            DescriptorSet(kps, binary_descriptors, None, "bad")

    def test_release_drops_buffers(self, binary_descriptors):
        ds = make_descriptor_set(binary_descriptors.copy())
        ds.image = np.zeros((10, 10), dtype=np.uint8)
        ds.release()
        assert ds.released
        assert ds.image is None
        assert len(ds) == 0
        assert ds.descriptors.shape == (0, 32)
        assert ds.descriptors.base is None

    def test_release_twice_is_harmless(self, binary_descriptors):
        ds = make_descriptor_set(binary_descriptors)
        ds.release()
        ds.release()
        assert ds.released

    def test_context_manager_releases(self, binary_descriptors):
        with make_descriptor_set(binary_descriptors) as ds:
            assert len(ds) == len(binary_descriptors)
        assert ds.released

    def test_context_manager_releases_on_error(self, binary_descriptors):
        ds = make_descriptor_set(binary_descriptors)
        with pytest.raises(RuntimeError):
            with ds:
                raise RuntimeError("boom")
        assert ds.released


class TestORBExtractor:
    """Tests for CPU ORB extraction."""

    def test_extracts_aligned_features(self, query_image):
        ds = ORBExtractor(500).extract(query_image, "query")
        assert 0 < len(ds) <= 500
        assert ds.descriptors.shape == (len(ds), 32)
        assert ds.descriptors.dtype == np.uint8
        assert ds.identity == "query"
        assert ds.image is query_image

    def test_flat_image_has_no_features(self, flat_image):
        ds = ORBExtractor().extract(flat_image)
        assert len(ds) == 0
        assert ds.descriptors.shape == (0, 32)

    def test_deterministic(self, query_image):
        extractor = ORBExtractor(300)
        a = extractor.extract(query_image)
        b = extractor.extract(query_image)
        assert np.array_equal(a.descriptors, b.descriptors)

    def test_float_image_accepted(self, query_image):
        ds = ORBExtractor(200).extract(query_image.astype(np.float32) / 255.0)
        assert len(ds) > 0

    def test_unsupported_depth_propagates(self, query_image):
        with pytest.raises(UnsupportedDepthError):
            ORBExtractor().extract(query_image.astype(np.uint16))

    def test_load_from_file(self, tmp_path, query_image):
        path = write_image(tmp_path / "q.png", query_image)
        ds = ORBExtractor(200).load(path)
        assert ds.identity == path
        assert len(ds) > 0


class TestCreateExtractor:
    """Tests for extractor selection."""

    def test_orb(self):
        extractor = create_extractor("orb", 123)
        assert isinstance(extractor, ORBExtractor)
        assert extractor.max_features == 123

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown extractor"):
            create_extractor("sift")

    def test_cuda_without_device(self, monkeypatch):
        monkeypatch.setattr(features.cv2.cuda, "getCudaEnabledDeviceCount", lambda: 0)
        with pytest.raises(ExtractionError, match="CUDA"):
            CudaORBExtractor(100)
