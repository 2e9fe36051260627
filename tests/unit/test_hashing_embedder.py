"""Unit tests for the local feature-hashing embedder."""

import numpy as np
import pytest

from codeqa.infrastructure.embeddings.hashing import HashingEmbedder, string_hash


class TestStringHash:
    def test_known_values(self):
        assert string_hash("") == 0
        assert string_hash("a") == 97
        assert string_hash("ab") == 97 * 31 + 98

    def test_wraps_to_signed_32_bit(self):
        h = string_hash("averyveryverylongidentifiername")
        assert -(2**31) <= h < 2**31


class TestHashingEmbedder:
    def test_scheme_and_dimension(self):
        embedder = HashingEmbedder()
        assert embedder.dimension == 256
        assert embedder.scheme == "local-hash:256"

    def test_invalid_dimension(self):
        with pytest.raises(ValueError):
            HashingEmbedder(dimension=0)

    def test_deterministic(self):
        text = "function parseConfig(raw) { return JSON.parse(raw); }"
        a = HashingEmbedder().embed(text)
        b = HashingEmbedder().embed(text)
        assert a.dtype == np.float32
        assert np.array_equal(a, b)

    def test_unit_length(self):
        vector = HashingEmbedder().embed("load the configuration file")
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-6)

    def test_single_term_position(self):
        embedder = HashingEmbedder(dimension=64)
        vector = embedder.embed("load")
        position = abs(string_hash("load")) % 64
        assert vector[position] == pytest.approx(1.0)
        assert np.count_nonzero(vector) == 1

    def test_text_without_tokens_is_zero_vector(self):
        vector = HashingEmbedder().embed("a b ?")
        assert not vector.any()

    def test_batch_preserves_order(self):
        embedder = HashingEmbedder()
        texts = ["parse config", "render widget", "load file"]
        batch = embedder.embed_batch(texts)

        assert batch.shape == (3, 256)
        for row, text in zip(batch, texts):
            assert np.array_equal(row, embedder.embed(text))

    def test_empty_batch(self):
        assert HashingEmbedder().embed_batch([]).shape == (0, 256)
