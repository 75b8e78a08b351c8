"""
Embedding providers for task, branch and goal text.
"""

from abc import ABC, abstractmethod
import hashlib
from typing import List

import numpy as np


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Embed several texts; returns an array of shape (len(texts), dimension)."""
        if not texts:
            return np.empty((0, self.get_dimension()), dtype=np.float32)
        return np.array([self.embed_text(text) for text in texts], dtype=np.float32)


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider.

    Produces reproducible vectors from text without a model download, which
    keeps the vector overlay usable offline and in tests. Identical text
    always maps to the identical vector.
    """

    def __init__(self, dimension: int = 384):
        if dimension < 1:
            raise ValueError("dimension must be >= 1")
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using sha256 over counter blocks."""
        data = (text or "").encode("utf-8")
        vector = []
        counter = 0
        while len(vector) < self.dimension:
            digest = hashlib.sha256(data + counter.to_bytes(4, "big")).digest()
            for i in range(0, len(digest), 4):
                if len(vector) >= self.dimension:
                    break
                value = int.from_bytes(digest[i:i + 4], "big")
                # Map to [-1, 1] for cosine similarity
                vector.append((value / (2**32)) * 2 - 1)
            counter += 1
        return vector

    def get_dimension(self) -> int:
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded on first use.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError:
                raise ImportError("sentence-transformers not installed. Install the 'embeddings' extra.")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.empty((0, self.get_dimension()), dtype=np.float32)
        embeddings = self.model.encode(texts, convert_to_tensor=False, show_progress_bar=False)
        return np.asarray(embeddings, dtype=np.float32)

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            # Get dimension by encoding a dummy string
            dummy_embedding = self.model.encode("test", convert_to_tensor=False)
            self._dimension = len(dummy_embedding)
        return self._dimension
