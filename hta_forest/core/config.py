"""
Forest HTA configuration.
Environment-driven settings for path-scoped persistence and the vector overlay.
"""

import os
from pathlib import Path

# Data directory shared by the document store and the on-disk vector backends
FOREST_DATA_DIR = os.getenv("FOREST_DATA_DIR", "./.forest-data")

# Document store configuration
DB_PATH = os.getenv("DB_PATH", os.path.join(FOREST_DATA_DIR, "forest.db"))
DEFAULT_PATH_NAME = os.getenv("DEFAULT_PATH_NAME", "general")
STORE_TIMEOUT_SEC = float(os.getenv("STORE_TIMEOUT_SEC", "10"))

# Structural ceiling for parent-link walks (cycle check, depth, ancestors)
MAX_HIERARCHY_DEPTH = int(os.getenv("MAX_HIERARCHY_DEPTH", "100"))

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Vector overlay configuration (default enabled, in-memory backend)
VECTOR_ENABLED = os.getenv("VECTOR_ENABLED", "true").lower() == "true"
VECTOR_PROVIDER = os.getenv("VECTOR_PROVIDER", "memory")  # memory|faiss|sqlite
VECTOR_DB_PATH = os.getenv("VECTOR_DB_PATH", os.path.join(FOREST_DATA_DIR, "forest_vectors.sqlite"))
VECTOR_COLLECTION = os.getenv("VECTOR_COLLECTION", "forest_vectors")
VECTOR_TIMEOUT_SEC = float(os.getenv("VECTOR_TIMEOUT_SEC", "30"))
VECTOR_MIN_SCORE = float(os.getenv("VECTOR_MIN_SCORE", "0.1"))

# Embedding configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))

VERSION = "1.0.0"


def get_vector_store(dimension: int = None):
    """Get configured vector store implementation. Returns None if vector features disabled."""
    if not are_vector_features_enabled():
        return None

    dimension = dimension or EMBED_DIM

    if VECTOR_PROVIDER == "faiss":
        from ..vector.faiss_store import FaissVectorStore
        return FaissVectorStore(dimension=dimension, collection=VECTOR_COLLECTION)
    elif VECTOR_PROVIDER == "sqlite":
        from ..vector.sqlite_store import SQLiteVectorStore
        return SQLiteVectorStore(db_path=VECTOR_DB_PATH, collection=VECTOR_COLLECTION)
    else:
        from ..vector.index import SimpleInMemoryVectorStore
        return SimpleInMemoryVectorStore(collection=VECTOR_COLLECTION)


def get_embedding_provider():
    """Get configured embedding provider implementation. Returns None if vector features disabled."""
    if not are_vector_features_enabled():
        return None

    if EMBED_PROVIDER == "sentence":
        from ..vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)

    from ..vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(dimension=EMBED_DIM)


def are_vector_features_enabled():
    """Check if vector features are enabled."""
    return os.getenv("VECTOR_ENABLED", "true").lower() == "true"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_data_directory(db_path: str = None):
    """Ensure the directory holding a database file exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def validate_vector_config():
    """Validate vector configuration and return any issues."""
    issues = []

    if VECTOR_PROVIDER not in ["memory", "faiss", "sqlite"]:
        issues.append(f"Invalid VECTOR_PROVIDER: {VECTOR_PROVIDER}")

    if EMBED_PROVIDER not in ["hash", "sentence"]:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    if VECTOR_TIMEOUT_SEC <= 0:
        issues.append("VECTOR_TIMEOUT_SEC must be > 0")

    if STORE_TIMEOUT_SEC <= 0:
        issues.append("STORE_TIMEOUT_SEC must be > 0")

    if MAX_HIERARCHY_DEPTH < 1:
        issues.append("MAX_HIERARCHY_DEPTH must be >= 1")

    return issues
