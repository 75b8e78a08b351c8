"""
Vector adapter: normalization at the boundary, single format retry, timeouts, corruption latch.
"""

import logging
import threading
import time
from unittest.mock import MagicMock

import numpy as np
import pytest

from hta_forest.core.errors import (
    FormatMismatchError,
    VectorBackendError,
    VectorFormatError,
    VectorTimeoutError,
)
from hta_forest.vector.adapter import VectorAdapter, is_corruption_error
from hta_forest.vector.index import SimpleInMemoryVectorStore
from hta_forest.vector.normalize import NumericVector
from hta_forest.vector.types import VECTOR_STORE_CORRUPTED, VECTOR_STORE_DEGRADED, VECTOR_STORE_OK


@pytest.fixture
def backend():
    return SimpleInMemoryVectorStore()


@pytest.fixture
def adapter(backend):
    adapter = VectorAdapter(backend, timeout=5.0)
    yield adapter
    adapter.close()


def test_scenario_single_best_match(adapter):
    adapter.upsert("v1", [0.1, 0.2, 0.3])
    adapter.upsert("v2", [0.3, 0.2, 0.1])

    results = adapter.query([0.1, 0.2, 0.3], 1, 0.0)

    assert len(results) == 1
    assert results[0].id == "v1"
    assert results[0].to_dict()["score"] == pytest.approx(1.0)


def test_any_input_representation_reaches_backend_as_numeric_vector(adapter, backend):
    adapter.upsert("list", [1, 2, 3])
    adapter.upsert("array", np.array([1, 2, 3], dtype=np.float32))
    adapter.upsert("nested", [[1], [2, 3]])

    for record_id in ["list", "array", "nested"]:
        stored = backend.get(record_id).vector
        assert isinstance(stored, NumericVector)
        assert stored.tolist() == [1.0, 2.0, 3.0]


def test_invalid_vector_never_reaches_backend():
    backend = MagicMock()
    adapter = VectorAdapter(backend)
    with pytest.raises(VectorFormatError):
        adapter.upsert("a", ["x", 1])
    backend.upsert.assert_not_called()
    adapter.close()


def test_blank_id_rejected(adapter):
    with pytest.raises(ValueError):
        adapter.upsert("", [1.0])


def test_format_mismatch_retried_exactly_once():
    backend = MagicMock()
    backend.upsert.side_effect = [FormatMismatchError("AttributeError: 'list' object has no attribute 'tolist'"), None]
    adapter = VectorAdapter(backend)

    adapter.upsert("v1", [0.1, 0.2, 0.3], {"type": "task"})

    assert backend.upsert.call_count == 2
    record_id, vector, metadata = backend.upsert.call_args[0]
    assert record_id == "v1"
    assert isinstance(vector, NumericVector)
    assert vector.tolist() == [0.1, 0.2, 0.3]
    assert metadata == {"type": "task"}
    assert adapter.get_recovery_status().format_retries == 1
    adapter.close()


def test_raw_attribute_error_counts_as_format_mismatch():
    backend = MagicMock()
    backend.upsert.side_effect = [AttributeError("'list' object has no attribute 'tolist'"), None]
    adapter = VectorAdapter(backend)

    adapter.upsert("v1", [1.0, 2.0])

    assert backend.upsert.call_count == 2
    adapter.close()


def test_format_mismatch_surfaces_after_second_failure():
    backend = MagicMock()
    backend.upsert.side_effect = FormatMismatchError("no tolist")
    adapter = VectorAdapter(backend)

    with pytest.raises(FormatMismatchError):
        adapter.upsert("v1", [1.0, 2.0])

    assert backend.upsert.call_count == 2
    adapter.close()


def test_other_backend_errors_are_not_retried():
    backend = MagicMock()
    backend.upsert.side_effect = RuntimeError("disk full")
    adapter = VectorAdapter(backend)

    with pytest.raises(VectorBackendError) as exc_info:
        adapter.upsert("v1", [1.0, 2.0])

    assert backend.upsert.call_count == 1
    assert exc_info.value.operation == "upsert"
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    adapter.close()


def test_timeout_is_reported():
    backend = MagicMock()
    release = threading.Event()
    backend.query.side_effect = lambda *args: release.wait(5)
    adapter = VectorAdapter(backend, timeout=5.0)

    with pytest.raises(VectorTimeoutError) as exc_info:
        adapter.query([1.0, 0.0], timeout=0.05)

    assert isinstance(exc_info.value, TimeoutError)
    release.set()
    adapter.close()


def test_query_k_zero(adapter):
    adapter.upsert("a", [1.0, 0.0])
    assert adapter.query([1.0, 0.0], k=0) == []


def test_passthrough_calls(adapter):
    adapter.upsert("a", [1.0, 0.0])
    assert adapter.count() == 1
    assert adapter.list_collections() == ["forest_vectors"]
    assert adapter.heartbeat() is True
    assert adapter.delete("a") is True
    assert adapter.count() == 0


def test_upserts_to_same_id_are_serialized():
    active = []
    overlap = []

    class SlowBackend(SimpleInMemoryVectorStore):
        def upsert(self, record_id, vector, metadata=None):
            if record_id in active:
                overlap.append(record_id)
            active.append(record_id)
            time.sleep(0.01)
            active.remove(record_id)
            super().upsert(record_id, vector, metadata)

    adapter = VectorAdapter(SlowBackend(), max_workers=8)
    threads = [threading.Thread(target=adapter.upsert, args=("same", [float(n), 1.0])) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlap == []
    assert adapter.count() == 1
    adapter.close()


class StallingBackend(SimpleInMemoryVectorStore):
    """The first upsert blocks until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()
        self.versions = []

    def upsert(self, record_id, vector, metadata=None):
        self.versions.append(metadata["version"])
        if len(self.versions) == 1:
            self.release.wait(5)
        super().upsert(record_id, vector, metadata)


def test_timed_out_upsert_cannot_overwrite_later_write():
    backend = StallingBackend()
    adapter = VectorAdapter(backend, timeout=5.0)

    with pytest.raises(VectorTimeoutError):
        adapter.upsert("v1", [1.0, 0.0], {"version": "old"}, timeout=0.05)

    threading.Timer(0.1, backend.release.set).start()
    adapter.upsert("v1", [0.0, 1.0], {"version": "new"})

    assert backend.versions == ["old", "new"]
    assert backend.get("v1").metadata == {"version": "new"}
    adapter.close()


def test_pending_upsert_blocks_only_its_own_id():
    backend = StallingBackend()
    adapter = VectorAdapter(backend, timeout=5.0)

    with pytest.raises(VectorTimeoutError):
        adapter.upsert("v1", [1.0, 0.0], {"version": "old"}, timeout=0.05)
    with pytest.raises(VectorTimeoutError):
        adapter.upsert("v1", [0.0, 1.0], {"version": "new"}, timeout=0.05)
    adapter.upsert("v2", [0.0, 1.0], {"version": "other"})

    assert backend.versions == ["old", "other"]
    backend.release.set()

    deadline = time.monotonic() + 5
    while len(adapter._id_locks) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert len(adapter._id_locks) == 0
    assert backend.get("v1").metadata == {"version": "old"}
    adapter.close()


def test_timeout_log_names_the_record(caplog):
    backend = StallingBackend()
    adapter = VectorAdapter(backend, timeout=5.0)

    with caplog.at_level(logging.INFO, logger="hta_forest"):
        with pytest.raises(VectorTimeoutError):
            adapter.upsert("v1", [1.0, 0.0], {"version": "old"}, timeout=0.05)

    message = caplog.records[-1].getMessage()
    assert "'record_id': 'v1'" in message
    assert "'collection': 'forest_vectors'" in message
    backend.release.set()
    adapter.close()


class TestRecoveryStatus:

    def test_healthy(self, adapter):
        adapter.upsert("a", [1.0, 0.0])
        status = adapter.get_recovery_status()
        assert status.vector_store_status == VECTOR_STORE_OK
        assert status.corruption_detected is False

    def test_unreachable_backend_is_degraded_not_raised(self):
        backend = MagicMock()
        backend.heartbeat.side_effect = ConnectionError("refused")
        adapter = VectorAdapter(backend)

        status = adapter.get_recovery_status()

        assert status.vector_store_status == VECTOR_STORE_DEGRADED
        assert status.corruption_detected is False
        assert "refused" in status.error
        adapter.close()

    def test_corrupted_backend_reported_not_raised(self):
        backend = MagicMock()
        backend.heartbeat.side_effect = RuntimeError("Status: 500 Internal Server Error")
        adapter = VectorAdapter(backend)

        status = adapter.get_recovery_status()

        assert status.vector_store_status == VECTOR_STORE_CORRUPTED
        assert status.corruption_detected is True
        adapter.close()

    def test_status_check_timeout_does_not_raise(self):
        backend = MagicMock()
        release = threading.Event()
        backend.heartbeat.side_effect = lambda: release.wait(5)
        adapter = VectorAdapter(backend)

        status = adapter.get_recovery_status(timeout=0.05)

        assert status.vector_store_status == VECTOR_STORE_DEGRADED
        release.set()
        adapter.close()

    def test_unreadable_records_latch_corruption(self, adapter, backend):
        adapter.upsert("a", [1.0, 0.0])
        backend._vectors["a"].vector = [1.0, 0.0]

        status = adapter.get_recovery_status()
        assert status.vector_store_status == VECTOR_STORE_CORRUPTED
        assert status.unreadable_ids == ["a"]

        # Latched until a recovery succeeds, even once the record is gone
        backend._vectors.clear()
        backend._index.clear()
        assert adapter.get_recovery_status().corruption_detected is True

        assert adapter.recover_from_corruption() is True
        status = adapter.get_recovery_status()
        assert status.vector_store_status == VECTOR_STORE_OK
        assert status.corruption_detected is False
        assert status.last_recovery is not None

    def test_corruption_seen_during_query_latches(self):
        backend = MagicMock()
        backend.query.side_effect = AttributeError("'NoneType' object has no attribute 'tolist'")
        adapter = VectorAdapter(backend)

        with pytest.raises(FormatMismatchError):
            adapter.query([1.0])
        backend.query.side_effect = RuntimeError("database disk image is malformed")
        with pytest.raises(VectorBackendError):
            adapter.query([1.0])

        assert adapter.get_recovery_status().corruption_detected is True
        adapter.close()

    def test_failed_recovery_keeps_latch(self):
        backend = MagicMock()
        backend.heartbeat.side_effect = RuntimeError("internal server error")
        backend.reset_collection.side_effect = RuntimeError("still broken")
        adapter = VectorAdapter(backend)

        adapter.get_recovery_status()
        assert adapter.recover_from_corruption() is False
        assert adapter.get_recovery_status().corruption_detected is True
        adapter.close()

    def test_status_to_dict(self, adapter):
        payload = adapter.get_recovery_status().to_dict()
        assert payload["vector_store_status"] == "ok"
        assert payload["corruption_detected"] is False


@pytest.mark.parametrize("error, expected", [
    (AttributeError("'list' object has no attribute 'tolist'"), True),
    (RuntimeError("Status: 500"), True),
    (RuntimeError("Internal Server Error"), True),
    (RuntimeError("file is not a database"), True),
    (ConnectionError("refused"), False),
    (ValueError("bad input"), False),
])
def test_is_corruption_error(error, expected):
    assert is_corruption_error(error) is expected


def test_is_corruption_error_follows_cause():
    try:
        try:
            raise AttributeError("no attribute 'tolist'")
        except AttributeError as e:
            raise VectorBackendError("upsert failed") from e
    except VectorBackendError as wrapped:
        assert is_corruption_error(wrapped) is True
