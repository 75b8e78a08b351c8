"""
Vector overlay records and status types.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .normalize import NumericVector


@dataclass
class VectorRecord:
    """Represents a vector record with metadata."""

    id: str
    """Unique identifier for the vector record"""

    vector: NumericVector
    """The normalized vector representation of the content"""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Additional metadata associated with the vector"""


@dataclass
class QueryResult:
    """Represents a search result from vector store."""

    id: str
    """Identifier for the matching record"""

    score: float
    """Cosine similarity of the match (-1 to 1)"""

    metadata: Dict[str, Any] = field(default_factory=dict)
    """Metadata associated with the matched record"""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "score": self.score, "metadata": dict(self.metadata)}


VECTOR_STORE_OK = "ok"
VECTOR_STORE_DEGRADED = "degraded"
VECTOR_STORE_CORRUPTED = "corrupted"


@dataclass
class RecoveryStatus:
    """Health of the vector backend as seen by the adapter."""

    vector_store_status: str
    corruption_detected: bool
    last_recovery: Optional[str] = None
    format_retries: int = 0
    unreadable_ids: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vector_store_status": self.vector_store_status,
            "corruption_detected": self.corruption_detected,
            "last_recovery": self.last_recovery,
            "format_retries": self.format_retries,
            "unreadable_ids": list(self.unreadable_ids),
            "error": self.error,
        }
