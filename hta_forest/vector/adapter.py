"""
Vector adapter.

Front door to whichever vector backend is configured. Embeddings are
normalized before they reach the backend, backend calls are bounded by a
timeout, and corruption-looking failures are latched until a recovery
succeeds.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, List, Optional

from ..core.config import VECTOR_TIMEOUT_SEC
from ..core.errors import (
    FormatMismatchError,
    VectorBackendError,
    VectorFormatError,
    VectorTimeoutError,
)
from ..core.schema import utc_now_iso
from ..util.locks import KeyedLocks
from ..util.logging import logger
from .index import IVectorStore
from .normalize import NumericVector, normalize
from .types import (
    VECTOR_STORE_CORRUPTED,
    VECTOR_STORE_DEGRADED,
    VECTOR_STORE_OK,
    QueryResult,
    RecoveryStatus,
)

CORRUPTION_SIGNATURES = (
    "tolist",
    "attributeerror",
    "status: 500",
    "internal server error",
    "corrupt",
    "malformed",
    "not a database",
)


def is_corruption_error(error: BaseException) -> bool:
    """Whether ``error`` (or anything it was raised from) looks like backend corruption."""
    seen = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        text = f"{type(error).__name__}: {error}".lower()
        if any(signature in text for signature in CORRUPTION_SIGNATURES):
            return True
        error = error.__cause__ or error.__context__
    return False


class VectorAdapter:
    """
    Normalizing, time-bounded wrapper around an ``IVectorStore``.

    Upserts to the same id are serialized; distinct ids run concurrently.
    A backend that rejects a vector's format gets exactly one retry with the
    vector re-normalized before the failure is surfaced.
    """

    def __init__(self, backend: IVectorStore, timeout: float = VECTOR_TIMEOUT_SEC, max_workers: int = 4):
        self.backend = backend
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="vector-adapter")
        self._id_locks = KeyedLocks()
        self._state_lock = threading.Lock()
        self._corruption_detected = False
        self._last_error: Optional[str] = None
        self._last_recovery: Optional[str] = None
        self._format_retries = 0

    @property
    def collection(self) -> str:
        return getattr(self.backend, "collection", "")

    def normalize(self, vector: Any, dimension: int = None) -> NumericVector:
        return normalize(vector, dimension=dimension)

    def upsert(self, record_id: str, vector: Any, metadata: Dict[str, Any] = None, timeout: float = None) -> None:
        """Insert or replace ``record_id``. Raises ``VectorFormatError`` before touching the backend on bad input."""
        if not isinstance(record_id, str) or not record_id:
            raise ValueError("record_id must be a non-empty string")
        normalized = self.normalize(vector)
        metadata = dict(metadata or {})

        submitted = self._hold_id("upsert", record_id, timeout)
        try:
            try:
                self._call("upsert", self.backend.upsert, record_id, normalized, metadata, timeout=timeout,
                           record_id=record_id, submitted=submitted)
            except FormatMismatchError as e:
                with self._state_lock:
                    self._format_retries += 1
                logger.log_recovery("format_retry", "retrying", {"record_id": record_id, "error": str(e)[:100]})
                retry_vector = NumericVector(normalize(normalized).to_numpy())
                self._call("upsert", self.backend.upsert, record_id, retry_vector, metadata,
                           timeout=timeout, retry=True, record_id=record_id, submitted=submitted)
        finally:
            self._release_id_when_done(record_id, submitted)

        logger.log_vector_operation("upsert", record_id, {"dimension": normalized.dimension})

    def query(self, vector: Any, k: int = 5, min_score: float = 0.0, where: Dict[str, Any] = None,
              timeout: float = None) -> List[QueryResult]:
        """Top ``k`` matches with score >= ``min_score``, best first."""
        if k <= 0:
            return []
        normalized = self.normalize(vector)
        results = self._call("query", self.backend.query, normalized, k, min_score, where, timeout=timeout)
        logger.log_vector_operation("query", self.collection, {"k": k, "results": len(results)})
        return results

    def delete(self, record_id: str, timeout: float = None) -> bool:
        submitted = self._hold_id("delete", record_id, timeout)
        try:
            return self._call("delete", self.backend.delete, record_id, timeout=timeout,
                              record_id=record_id, submitted=submitted)
        finally:
            self._release_id_when_done(record_id, submitted)

    def count(self, timeout: float = None) -> int:
        return self._call("count", self.backend.count, timeout=timeout)

    def list_collections(self, timeout: float = None) -> List[str]:
        return self._call("list_collections", self.backend.list_collections, timeout=timeout)

    def heartbeat(self, timeout: float = None) -> bool:
        return self._call("heartbeat", self.backend.heartbeat, timeout=timeout)

    # Health and recovery

    def get_recovery_status(self, timeout: float = None) -> RecoveryStatus:
        """Check the backend. Never raises; an unreachable backend reports as degraded."""
        unreadable: List[str] = []
        error = None
        status = VECTOR_STORE_OK
        try:
            self._call("heartbeat", self.backend.heartbeat, timeout=timeout)
            unreadable = self._call("verify_integrity", self.backend.verify_integrity, timeout=timeout)
            if unreadable:
                self._mark_corrupted(f"{len(unreadable)} unreadable records")
        except Exception as e:
            error = str(e)
            if not self._corruption_detected:
                status = VECTOR_STORE_DEGRADED

        with self._state_lock:
            if self._corruption_detected:
                status = VECTOR_STORE_CORRUPTED
            return RecoveryStatus(
                vector_store_status=status,
                corruption_detected=self._corruption_detected,
                last_recovery=self._last_recovery,
                format_retries=self._format_retries,
                unreadable_ids=list(unreadable),
                error=error or (self._last_error if self._corruption_detected else None),
            )

    def recover_from_corruption(self, timeout: float = None) -> bool:
        """Reset the collection and clear the corruption latch. Returns False when the reset fails."""
        logger.log_recovery("reset", "started", {"collection": self.collection})
        try:
            self._call("reset_collection", self.backend.reset_collection, timeout=timeout, track=False)
            self._call("heartbeat", self.backend.heartbeat, timeout=timeout, track=False)
        except Exception as e:
            logger.log_recovery("reset", "failed", {"collection": self.collection, "error": str(e)[:100]})
            return False

        with self._state_lock:
            self._corruption_detected = False
            self._last_error = None
            self._last_recovery = utc_now_iso()
        logger.log_recovery("reset", "success", {"collection": self.collection})
        return True

    def close(self):
        self._executor.shutdown(wait=False)
        close = getattr(self.backend, "close", None)
        if callable(close):
            close()

    # Internals

    def _mark_corrupted(self, message: str):
        with self._state_lock:
            first = not self._corruption_detected
            self._corruption_detected = True
            self._last_error = message
        if first:
            logger.log_recovery("detect", "corrupted", {"collection": self.collection, "error": message[:100]})

    def _hold_id(self, operation: str, record_id: str, timeout: float = None) -> List[Future]:
        # Released only once the backend work behind it has finished, even after a caller timeout
        timeout = self.timeout if timeout is None else timeout
        if not self._id_locks.acquire(record_id, timeout=timeout):
            logger.log_vector_operation(operation, record_id, {"timeout": timeout, "waiting": "pending write"},
                                        status="timeout")
            raise VectorTimeoutError(f"Earlier {operation} of {record_id!r} still running after {timeout}s",
                                     operation=operation)
        return []

    def _release_id_when_done(self, record_id: str, submitted: List[Future]):
        if submitted:
            submitted[-1].add_done_callback(lambda _future: self._id_locks.release(record_id))
        else:
            self._id_locks.release(record_id)

    def _call(self, operation: str, fn: Callable, *args, timeout: float = None, retry: bool = False,
              track: bool = True, record_id: str = None, submitted: List[Future] = None):
        timeout = self.timeout if timeout is None else timeout
        log_key = record_id or self.collection
        future = self._executor.submit(fn, *args)
        if submitted is not None:
            submitted.append(future)
        try:
            try:
                return future.result(timeout=timeout)
            except AttributeError as e:
                # Backends that probe for a plain-list conversion fail this way
                if "tolist" not in str(e):
                    raise
                raise FormatMismatchError(f"AttributeError: {e}", operation=operation) from e
        except FutureTimeoutError as e:
            # The worker thread keeps running; only the caller stops waiting
            future.cancel()
            logger.log_vector_operation(operation, log_key, {"collection": self.collection, "timeout": timeout},
                                        status="timeout")
            raise VectorTimeoutError(f"Backend did not answer within {timeout}s", operation=operation) from e
        except FormatMismatchError as e:
            if retry:
                if track:
                    self._mark_corrupted(str(e))
                logger.log_vector_operation(operation, log_key, {"collection": self.collection,
                                                                 "error": str(e)[:100]}, status="failed")
            raise
        except VectorFormatError:
            raise
        except Exception as e:
            if track and is_corruption_error(e):
                self._mark_corrupted(str(e))
            logger.log_vector_operation(operation, log_key, {"collection": self.collection, "error": str(e)[:100]},
                                        status="failed")
            if isinstance(e, VectorBackendError):
                raise
            raise VectorBackendError(f"{type(e).__name__}: {e}", operation=operation) from e
