"""
Error taxonomy for the persistence and vector boundaries.
Structural problems and absence are results, not exceptions; see hierarchy.py and store.py.
"""

from typing import Optional, Tuple


class ForestError(Exception):
    """Base class for boundary failures raised by the core."""

    def __init__(self, message: str, key: Optional[Tuple] = None, operation: Optional[str] = None):
        super().__init__(message)
        self.key = key
        self.operation = operation

    def __str__(self):
        message = super().__str__()
        if self.operation:
            message = f"{self.operation}: {message}"
        if self.key is not None:
            message = f"{message} (key={'/'.join(str(part) for part in self.key)})"
        return message


class StoreError(ForestError):
    """Persistence read/write failed; the underlying cause is chained."""


class WriteConflictError(ForestError):
    """Concurrent write contention on the same key. Fatal for the operation, never retried."""


class StoreTimeoutError(ForestError, TimeoutError):
    """A persistence call exceeded its deadline. Nothing was committed."""


class VectorFormatError(ForestError, ValueError):
    """An embedding value cannot be normalized to a plain numeric vector."""


class FormatMismatchError(ForestError, TypeError):
    """A vector backend received a value without the plain-array conversion."""


class VectorTimeoutError(ForestError, TimeoutError):
    """A vector backend call exceeded its deadline."""


class VectorBackendError(ForestError):
    """A vector backend call failed for a reason other than format or timeout."""
