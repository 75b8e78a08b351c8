"""
Vector backend interface and the in-memory backend.
"""

import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import numpy as np

from ..core.errors import FormatMismatchError, VectorFormatError
from .normalize import NumericVector
from .types import QueryResult, VectorRecord


def require_numeric_vector(vector: Any) -> NumericVector:
    """Backends only accept ``NumericVector``; anything else is a format mismatch."""
    if not isinstance(vector, NumericVector):
        raise FormatMismatchError(
            f"AttributeError: '{type(vector).__name__}' object has no attribute 'tolist'",
            operation="upsert",
        )
    return vector


def matches_filter(metadata: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    """Equality filter on metadata fields."""
    if not where:
        return True
    return all(metadata.get(key) == value for key, value in where.items())


def rank_results(candidates: List[QueryResult], top_k: int, min_score: float) -> List[QueryResult]:
    """Descending score; ``candidates`` must already be in insertion order so ties keep it."""
    kept = [result for result in candidates if result.score >= min_score]
    kept.sort(key=lambda result: -result.score)
    return kept[:max(top_k, 0)]


class IVectorStore(ABC):
    """Abstract interface for vector storage operations."""

    collection: str

    @abstractmethod
    def upsert(self, record_id: str, vector: NumericVector, metadata: Dict[str, Any] = None) -> None:
        """Insert or replace one vector."""
        pass

    def batch_upsert(self, records: List[VectorRecord]) -> None:
        """Insert or replace several vectors."""
        for record in records:
            self.upsert(record.id, record.vector, record.metadata)

    @abstractmethod
    def query(self, query_vector: NumericVector, top_k: int = 5, min_score: float = 0.0,
              where: Dict[str, Any] = None) -> List[QueryResult]:
        """Search for similar vectors and return ranked results."""
        pass

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """Delete a vector record by ID. Returns whether it existed."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all records from the store."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    def list_collections(self) -> List[str]:
        return [self.collection]

    def heartbeat(self) -> bool:
        """Liveness probe. Raises when the backend is unusable."""
        return True

    @abstractmethod
    def verify_integrity(self) -> List[str]:
        """IDs of stored records that cannot be read back in the expected format."""
        pass

    def reset_collection(self) -> None:
        """Drop everything in the collection, including unreadable records."""
        self.clear()


class SimpleInMemoryVectorStore(IVectorStore):
    """Simple in-memory implementation of IVectorStore using cosine similarity."""

    def __init__(self, collection: str = "forest_vectors"):
        self.collection = collection
        self.dimension: Optional[int] = None
        self._vectors: Dict[str, VectorRecord] = {}  # record_id -> VectorRecord, insertion ordered
        self._index: Dict[str, np.ndarray] = {}      # record_id -> unit vector
        self._lock = threading.Lock()

    def upsert(self, record_id: str, vector: NumericVector, metadata: Dict[str, Any] = None) -> None:
        vector = require_numeric_vector(vector)
        with self._lock:
            if self.dimension is not None and vector.dimension != self.dimension:
                raise VectorFormatError(
                    f"Vector dimension {vector.dimension} does not match expected dimension {self.dimension}"
                )
            self.dimension = vector.dimension

            # Replacing an id keeps its original insertion position
            self._vectors[record_id] = VectorRecord(id=record_id, vector=vector, metadata=dict(metadata or {}))

            values = vector.to_numpy()
            norm = np.linalg.norm(values)
            self._index[record_id] = values / norm if norm > 0 else values

    def query(self, query_vector: NumericVector, top_k: int = 5, min_score: float = 0.0,
              where: Dict[str, Any] = None) -> List[QueryResult]:
        query_vector = require_numeric_vector(query_vector)
        with self._lock:
            if not self._index:
                return []
            if self.dimension is not None and query_vector.dimension != self.dimension:
                raise VectorFormatError(
                    f"Query dimension {query_vector.dimension} does not match expected dimension {self.dimension}"
                )

            values = query_vector.to_numpy()
            norm = np.linalg.norm(values)
            if norm == 0:
                return []
            normalized_query = values / norm

            candidates = []
            for record_id, stored_vector in self._index.items():
                record = self._vectors[record_id]
                if not matches_filter(record.metadata, where):
                    continue
                score = float(np.dot(normalized_query, stored_vector))
                candidates.append(QueryResult(id=record_id, score=score, metadata=dict(record.metadata)))

        return rank_results(candidates, top_k, min_score)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            existed = self._vectors.pop(record_id, None) is not None
            self._index.pop(record_id, None)
            return existed

    def clear(self) -> None:
        with self._lock:
            self._vectors.clear()
            self._index.clear()
            self.dimension = None

    def count(self) -> int:
        with self._lock:
            return len(self._vectors)

    def get(self, record_id: str) -> Optional[VectorRecord]:
        with self._lock:
            return self._vectors.get(record_id)

    def verify_integrity(self) -> List[str]:
        unreadable = []
        with self._lock:
            for record_id, record in self._vectors.items():
                if not isinstance(record.vector, NumericVector):
                    unreadable.append(record_id)
                elif not np.all(np.isfinite(self._index.get(record_id, np.array([np.nan])))):
                    unreadable.append(record_id)
        return unreadable
