"""
Embedding providers - deterministic hash embeddings and the sentence-transformers wrapper.
"""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from hta_forest.vector.embeddings import (
    DeterministicHashEmbedding,
    IEmbeddingProvider,
    SentenceTransformerEmbedding,
)
from hta_forest.vector.normalize import normalize


def test_embedding_interface():
    """Test that the embedding provider implements the interface correctly."""
    embedder = DeterministicHashEmbedding(dimension=384)

    assert isinstance(embedder, IEmbeddingProvider)
    assert embedder.get_dimension() == 384


def test_deterministic_embedding():
    """Test that the same input always produces the same output."""
    embedder = DeterministicHashEmbedding(dimension=384)

    vector1 = embedder.embed_text("Practice C major scale")
    vector2 = DeterministicHashEmbedding(dimension=384).embed_text("Practice C major scale")

    assert vector1 == vector2
    assert len(vector1) == 384


def test_different_inputs_produce_different_vectors():
    embedder = DeterministicHashEmbedding(dimension=64)
    assert embedder.embed_text("scales") != embedder.embed_text("chords")


@pytest.mark.parametrize("dimension", [1, 3, 8, 9, 100, 1024])
def test_embedding_fills_requested_dimension(dimension):
    vector = DeterministicHashEmbedding(dimension=dimension).embed_text("text")
    assert len(vector) == dimension
    assert all(-1.0 <= value <= 1.0 for value in vector)


def test_embedding_is_not_zero_padded():
    vector = DeterministicHashEmbedding(dimension=384).embed_text("text")
    assert vector[-1] != 0.0
    assert len(set(vector)) > 300


def test_empty_text():
    vector = DeterministicHashEmbedding(dimension=16).embed_text("")
    assert len(vector) == 16
    assert normalize(vector).dimension == 16


def test_invalid_dimension():
    with pytest.raises(ValueError):
        DeterministicHashEmbedding(dimension=0)


def test_embed_texts_shape():
    embedder = DeterministicHashEmbedding(dimension=8)
    embeddings = embedder.embed_texts(["a", "b", "c"])
    assert embeddings.shape == (3, 8)
    assert embeddings.dtype == np.float32
    assert embedder.embed_texts([]).shape == (0, 8)


def test_sentence_transformer_loads_lazily():
    provider = SentenceTransformerEmbedding("some-model")
    assert provider._model is None


def test_sentence_transformer_embedding_with_stub_model():
    provider = SentenceTransformerEmbedding("some-model")
    model = MagicMock()
    model.encode.return_value = np.array([0.1, 0.2, 0.3], dtype=np.float32)
    provider._model = model

    vector = provider.embed_text("hello")

    assert vector == pytest.approx([0.1, 0.2, 0.3])
    assert provider.get_dimension() == 3
    model.encode.assert_any_call("hello", convert_to_tensor=False)


def test_sentence_transformer_missing_package():
    provider = SentenceTransformerEmbedding("some-model")
    with patch.dict("sys.modules", {"sentence_transformers": None}):
        with pytest.raises(ImportError):
            provider.model
