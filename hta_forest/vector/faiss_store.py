"""
FAISS-backed vector store.
Inner-product search over L2-normalized vectors, i.e. cosine similarity.
"""

import threading
from typing import Any, Dict, List, Optional

import numpy as np

from ..core.errors import VectorFormatError
from .index import IVectorStore, matches_filter, rank_results, require_numeric_vector
from .normalize import NumericVector
from .types import QueryResult


class FaissVectorStore(IVectorStore):
    """FAISS-backed implementation of IVectorStore with true upserts."""

    def __init__(self, dimension: int = 384, collection: str = "forest_vectors"):
        """
        Initialize FAISS vector store.

        Args:
            dimension: Dimension of the vectors (default: 384 for hash embeddings)
            collection: Name reported by ``list_collections``
        """
        try:
            import faiss
        except ImportError:
            raise ImportError("FAISS not installed. Please install faiss-cpu package.")

        self.faiss = faiss
        self.dimension = dimension
        self.collection = collection
        self._lock = threading.Lock()
        self._new_index()

    def _new_index(self):
        # IndexIDMap2 supports remove_ids and reconstruct, which upsert and integrity checks need
        self.index = self.faiss.IndexIDMap2(self.faiss.IndexFlatIP(self.dimension))
        self.id_to_vector_index: Dict[str, int] = {}
        self.vector_id_map: Dict[int, str] = {}
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.next_vector_index = 0

    def _prepare(self, vector: NumericVector) -> Optional[np.ndarray]:
        if vector.dimension != self.dimension:
            raise VectorFormatError(f"Vector dimension {vector.dimension} does not match expected dimension {self.dimension}")
        vector_array = vector.to_numpy(np.float32).reshape(1, -1)
        if not np.linalg.norm(vector_array):
            return vector_array
        self.faiss.normalize_L2(vector_array)
        return vector_array

    def upsert(self, record_id: str, vector: NumericVector, metadata: Dict[str, Any] = None) -> None:
        vector = require_numeric_vector(vector)
        vector_array = self._prepare(vector)

        with self._lock:
            vector_index = self.id_to_vector_index.get(record_id)
            if vector_index is None:
                # Sequential ids double as insertion order for tie-breaking
                vector_index = self.next_vector_index
                self.next_vector_index += 1
            else:
                self.index.remove_ids(np.array([vector_index], dtype=np.int64))

            self.index.add_with_ids(vector_array, np.array([vector_index], dtype=np.int64))
            self.id_to_vector_index[record_id] = vector_index
            self.vector_id_map[vector_index] = record_id
            self.metadata[record_id] = dict(metadata or {})

    def query(self, query_vector: NumericVector, top_k: int = 5, min_score: float = 0.0,
              where: Dict[str, Any] = None) -> List[QueryResult]:
        query_vector = require_numeric_vector(query_vector)
        with self._lock:
            if not self.index.ntotal:
                return []
            query_array = self._prepare(query_vector)
            if not np.linalg.norm(query_array):
                return []

            # Flat index: scoring everything is exact and lets ties resolve by insertion order
            scores, indices = self.index.search(query_array, self.index.ntotal)

            hits = []
            for score, vector_index in zip(scores[0], indices[0]):
                record_id = self.vector_id_map.get(int(vector_index))
                if record_id is None:
                    continue
                metadata = self.metadata.get(record_id, {})
                if not matches_filter(metadata, where):
                    continue
                hits.append((int(vector_index), QueryResult(id=record_id, score=float(score), metadata=dict(metadata))))

        hits.sort(key=lambda hit: hit[0])
        return rank_results([result for _, result in hits], top_k, min_score)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            vector_index = self.id_to_vector_index.pop(record_id, None)
            if vector_index is None:
                return False
            self.index.remove_ids(np.array([vector_index], dtype=np.int64))
            self.vector_id_map.pop(vector_index, None)
            self.metadata.pop(record_id, None)
            return True

    def clear(self) -> None:
        """Clear all records from the FAISS store."""
        with self._lock:
            self._new_index()

    def count(self) -> int:
        with self._lock:
            return int(self.index.ntotal)

    def verify_integrity(self) -> List[str]:
        unreadable = []
        with self._lock:
            for record_id, vector_index in self.id_to_vector_index.items():
                try:
                    stored = self.index.reconstruct(vector_index)
                except RuntimeError:
                    unreadable.append(record_id)
                    continue
                if stored.shape[0] != self.dimension or not np.all(np.isfinite(stored)):
                    unreadable.append(record_id)
        return unreadable
