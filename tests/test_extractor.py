"""Tests for feature extraction."""

import numpy as np
import pytest

from object_matcher.errors import DimensionMismatch, ExtractionError, NotReady
from object_matcher.extractor import FeatureExtractor, freeze

from conftest import FakeBackend


class TestFeatureExtractor:
    """Tests for image -> embedding extraction."""

    def test_returns_backend_output(self, red_square_image):
        extractor = FeatureExtractor(FakeBackend([[0.5, 0.25, 0.0]]))
        embedding = extractor.extract(red_square_image)
        np.testing.assert_allclose(embedding, [0.5, 0.25, 0.0])

    def test_embedding_is_readonly_float32(self, red_square_image):
        embedding = FeatureExtractor(FakeBackend()).extract(red_square_image)
        assert embedding.dtype == np.float32
        assert embedding.ndim == 1
        with pytest.raises(ValueError):
            embedding[0] = 42.0

    def test_backend_receives_normalized_tensor(self, noise_image):
        backend = FakeBackend(input_size=(32, 24))
        FeatureExtractor(backend).extract(noise_image)
        tensor = backend.tensors[0]
        assert tensor.shape == (1, 24, 32, 3)
        assert tensor.min() >= -1.0 and tensor.max() <= 1.0

    def test_flattens_batched_output(self, red_square_image):
        backend = FakeBackend([[[1.0, 2.0, 3.0]]])
        embedding = FeatureExtractor(backend).extract(red_square_image)
        assert embedding.shape == (3,)

    def test_not_ready_fails_fast(self, red_square_image):
        backend = FakeBackend(ready=False)
        with pytest.raises(NotReady):
            FeatureExtractor(backend).extract(red_square_image)
        assert backend.calls == 0

    def test_backend_error_wrapped(self, red_square_image):
        cause = RuntimeError("interpreter exploded")
        extractor = FeatureExtractor(FakeBackend([cause]))
        with pytest.raises(ExtractionError) as excinfo:
            extractor.extract(red_square_image)
        assert excinfo.value.__cause__ is cause

    def test_bad_image_raises_extraction_error(self):
        extractor = FeatureExtractor(FakeBackend())
        with pytest.raises(ExtractionError):
            extractor.extract(np.zeros((0, 0, 3), dtype=np.uint8))

    @pytest.mark.parametrize("bad", [np.nan, np.inf])
    def test_non_finite_output_rejected(self, red_square_image, bad):
        extractor = FeatureExtractor(FakeBackend([[bad, 0.0, 0.0]]))
        with pytest.raises(ExtractionError, match="NaN or infinite"):
            extractor.extract(red_square_image)

    def test_wrong_output_length(self, red_square_image):
        extractor = FeatureExtractor(FakeBackend([[1.0, 0.0]], output_length=3))
        with pytest.raises(DimensionMismatch):
            extractor.extract(red_square_image)

    def test_explicit_output_length_overrides_backend(self, red_square_image):
        backend = FakeBackend([[1.0, 0.0]], output_length=3)
        embedding = FeatureExtractor(backend, output_length=2).extract(red_square_image)
        assert embedding.shape == (2,)

    def test_source_image_not_modified(self, red_square_image):
        before = red_square_image.copy()
        FeatureExtractor(FakeBackend()).extract(red_square_image)
        np.testing.assert_array_equal(red_square_image, before)

    def test_close_closes_backend(self):
        backend = FakeBackend()
        extractor = FeatureExtractor(backend)
        extractor.close()
        assert backend.closed
        assert not extractor.is_ready()


class TestFreeze:
    """Tests for the embedding freezer."""

    def test_copy_is_independent(self):
        source = np.array([1.0, 2.0])
        frozen = freeze(source)
        source[0] = 9.0
        assert frozen[0] == 1.0
        assert not frozen.flags.writeable
