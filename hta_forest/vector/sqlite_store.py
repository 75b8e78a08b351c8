"""
SQLite-backed vector store.
Vectors are stored as float64 blobs and scored with numpy cosine similarity.
"""

import json
import os
import sqlite3
import threading
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.errors import VectorBackendError, VectorFormatError
from .index import IVectorStore, matches_filter, rank_results, require_numeric_vector
from .normalize import NumericVector
from .types import QueryResult

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS vectors (
    collection TEXT NOT NULL,
    id TEXT NOT NULL,
    vector BLOB NOT NULL,
    dimension INTEGER NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (collection, id)
)
"""


def _vector_to_bytes(vector: NumericVector) -> bytes:
    return vector.to_numpy(np.float64).tobytes()


def _bytes_to_vector(blob: bytes, dimension: int) -> np.ndarray:
    """Decode a stored blob, raising ValueError when it is not a finite vector of ``dimension``."""
    if not isinstance(blob, (bytes, memoryview)) or len(blob) != dimension * 8:
        raise ValueError("vector blob has unexpected size")
    values = np.frombuffer(blob, dtype=np.float64)
    if not np.all(np.isfinite(values)):
        raise ValueError("vector blob holds non-finite values")
    return values


class SQLiteVectorStore(IVectorStore):
    """Persistent vector store on a single SQLite file, one table shared by collections."""

    def __init__(self, db_path: str, collection: str = "forest_vectors"):
        self.db_path = db_path
        self.collection = collection
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    # Lifecycle

    def _init_db(self):
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        with self._lock:
            conn = self._get_conn()
            conn.execute(_CREATE_TABLE)
            conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _execute(self, operation: str, sql: str, params: Tuple = ()) -> List[Tuple]:
        with self._lock:
            conn = self._get_conn()
            try:
                rows = conn.execute(sql, params).fetchall()
                conn.commit()
                return rows
            except sqlite3.Error as e:
                conn.rollback()
                raise VectorBackendError(f"{type(e).__name__}: {e}", operation=operation) from e

    # IVectorStore

    def upsert(self, record_id: str, vector: NumericVector, metadata: Dict[str, Any] = None) -> None:
        vector = require_numeric_vector(vector)
        dimension = self._collection_dimension()
        if dimension is not None and vector.dimension != dimension:
            raise VectorFormatError(f"Vector dimension {vector.dimension} does not match expected dimension {dimension}")

        # ON CONFLICT keeps the rowid, so a replaced id keeps its insertion position
        self._execute(
            "upsert",
            "INSERT INTO vectors (collection, id, vector, dimension, metadata) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(collection, id) DO UPDATE SET vector = excluded.vector, "
            "dimension = excluded.dimension, metadata = excluded.metadata, updated_at = CURRENT_TIMESTAMP",
            (self.collection, record_id, _vector_to_bytes(vector), vector.dimension,
             json.dumps(metadata or {}, default=str)),
        )

    def query(self, query_vector: NumericVector, top_k: int = 5, min_score: float = 0.0,
              where: Dict[str, Any] = None) -> List[QueryResult]:
        query_vector = require_numeric_vector(query_vector)
        query_values = query_vector.to_numpy()
        query_norm = np.linalg.norm(query_values)
        if query_norm == 0:
            return []

        rows = self._execute(
            "query",
            "SELECT id, vector, dimension, metadata FROM vectors WHERE collection = ? ORDER BY rowid",
            (self.collection,),
        )

        candidates = []
        for record_id, blob, dimension, metadata_json in rows:
            try:
                stored = _bytes_to_vector(blob, dimension)
                metadata = json.loads(metadata_json or "{}")
            except ValueError:
                continue
            if stored.shape[0] != query_values.shape[0]:
                raise VectorFormatError(
                    f"Query dimension {query_values.shape[0]} does not match expected dimension {stored.shape[0]}"
                )
            if not matches_filter(metadata, where):
                continue
            stored_norm = np.linalg.norm(stored)
            score = float(np.dot(query_values, stored) / (query_norm * stored_norm)) if stored_norm else 0.0
            candidates.append(QueryResult(id=record_id, score=score, metadata=metadata))

        return rank_results(candidates, top_k, min_score)

    def delete(self, record_id: str) -> bool:
        with self._lock:
            conn = self._get_conn()
            try:
                cursor = conn.execute("DELETE FROM vectors WHERE collection = ? AND id = ?",
                                      (self.collection, record_id))
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise VectorBackendError(f"{type(e).__name__}: {e}", operation="delete") from e
            return cursor.rowcount > 0

    def clear(self) -> None:
        self._execute("clear", "DELETE FROM vectors WHERE collection = ?", (self.collection,))

    def count(self) -> int:
        rows = self._execute("count", "SELECT COUNT(*) FROM vectors WHERE collection = ?", (self.collection,))
        return rows[0][0]

    def list_collections(self) -> List[str]:
        rows = self._execute("list_collections", "SELECT DISTINCT collection FROM vectors ORDER BY collection")
        names = [row[0] for row in rows]
        if self.collection not in names:
            names.append(self.collection)
        return names

    def heartbeat(self) -> bool:
        self._execute("heartbeat", "SELECT 1")
        return True

    def verify_integrity(self) -> List[str]:
        rows = self._execute(
            "verify_integrity",
            "SELECT id, vector, dimension, metadata FROM vectors WHERE collection = ? ORDER BY rowid",
            (self.collection,),
        )
        unreadable = []
        for record_id, blob, dimension, metadata_json in rows:
            try:
                _bytes_to_vector(blob, dimension)
                json.loads(metadata_json or "{}")
            except (ValueError, TypeError):
                unreadable.append(record_id)
        return unreadable

    def reset_collection(self) -> None:
        self.clear()

    def _collection_dimension(self) -> Optional[int]:
        rows = self._execute(
            "upsert",
            "SELECT dimension FROM vectors WHERE collection = ? ORDER BY rowid LIMIT 1",
            (self.collection,),
        )
        return rows[0][0] if rows else None
