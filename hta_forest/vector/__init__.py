"""
Vector overlay - non-canonical, advisory layer over the path-scoped document store.
"""

# Package initialization for vector module
from .normalize import NumericVector, RawSequence, TypedBuffer, normalize
from .index import IVectorStore, SimpleInMemoryVectorStore
from .faiss_store import FaissVectorStore
from .sqlite_store import SQLiteVectorStore
from .types import VectorRecord, QueryResult, RecoveryStatus
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding
from .adapter import VectorAdapter, is_corruption_error
from .vectorization import ForestVectorization

__all__ = [
    'NumericVector',
    'RawSequence',
    'TypedBuffer',
    'normalize',
    'IVectorStore',
    'SimpleInMemoryVectorStore',
    'FaissVectorStore',
    'SQLiteVectorStore',
    'VectorRecord',
    'QueryResult',
    'RecoveryStatus',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'VectorAdapter',
    'is_corruption_error',
    'ForestVectorization'
]
