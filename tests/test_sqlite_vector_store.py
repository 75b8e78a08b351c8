"""
Tests for the SQLite-backed vector store.
"""

import sqlite3

import pytest

from hta_forest.core.errors import FormatMismatchError, VectorFormatError
from hta_forest.vector.normalize import normalize
from hta_forest.vector.sqlite_store import SQLiteVectorStore


@pytest.fixture
def store(tmp_path):
    store = SQLiteVectorStore(db_path=str(tmp_path / "vectors" / "forest_vectors.sqlite"))
    yield store
    store.close()


def test_upsert_and_query(store):
    store.upsert("v1", normalize([0.1, 0.2, 0.3]), {"type": "task"})
    store.upsert("v2", normalize([0.3, -0.2, 0.1]), {"type": "task"})

    results = store.query(normalize([0.1, 0.2, 0.3]), top_k=1, min_score=0.0)

    assert len(results) == 1
    assert results[0].id == "v1"
    assert results[0].score == pytest.approx(1.0)
    assert results[0].metadata == {"type": "task"}


def test_values_survive_reopen(tmp_path):
    path = str(tmp_path / "forest_vectors.sqlite")
    store = SQLiteVectorStore(db_path=path)
    store.upsert("v1", normalize([0.1, 0.2, 0.3]), {"n": 1})
    store.close()

    reopened = SQLiteVectorStore(db_path=path)
    assert reopened.count() == 1
    assert reopened.query(normalize([0.1, 0.2, 0.3]), top_k=1)[0].id == "v1"
    reopened.close()


def test_upsert_replaces_and_keeps_position(store):
    store.upsert("first", normalize([1.0, 0.0]), {"version": 1})
    store.upsert("second", normalize([1.0, 0.0]))
    store.upsert("first", normalize([3.0, 0.0]), {"version": 2})

    results = store.query(normalize([1.0, 0.0]), top_k=5)

    assert store.count() == 2
    assert [result.id for result in results] == ["first", "second"]
    assert results[0].metadata == {"version": 2}


def test_collections_are_isolated(tmp_path):
    path = str(tmp_path / "forest_vectors.sqlite")
    tasks = SQLiteVectorStore(db_path=path, collection="tasks")
    goals = SQLiteVectorStore(db_path=path, collection="goals")
    tasks.upsert("a", normalize([1.0, 0.0]))
    goals.upsert("b", normalize([1.0, 0.0]))

    assert tasks.count() == 1
    assert [result.id for result in goals.query(normalize([1.0, 0.0]))] == ["b"]
    assert tasks.list_collections() == ["goals", "tasks"]

    tasks.reset_collection()
    assert tasks.count() == 0
    assert goals.count() == 1
    tasks.close()
    goals.close()


def test_where_filter_and_threshold(store):
    store.upsert("p1", normalize([1.0, 0.0]), {"project_id": "P1"})
    store.upsert("p2", normalize([0.9, 0.1]), {"project_id": "P2"})
    store.upsert("p2-far", normalize([0.0, 1.0]), {"project_id": "P2"})

    results = store.query(normalize([1.0, 0.0]), top_k=5, min_score=0.5, where={"project_id": "P2"})
    assert [result.id for result in results] == ["p2"]


def test_dimension_mismatch(store):
    store.upsert("a", normalize([1.0, 0.0, 0.0]))
    with pytest.raises(VectorFormatError):
        store.upsert("b", normalize([1.0, 0.0]))
    with pytest.raises(VectorFormatError):
        store.query(normalize([1.0, 0.0]))


def test_rejects_plain_lists(store):
    with pytest.raises(FormatMismatchError):
        store.upsert("a", [1.0, 0.0])


def test_delete(store):
    store.upsert("a", normalize([1.0, 0.0]))
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.count() == 0


def test_heartbeat(store):
    assert store.heartbeat() is True


def test_corrupt_rows_are_skipped_and_reported(store):
    store.upsert("good", normalize([1.0, 0.0]))
    store.upsert("bad", normalize([1.0, 0.0]))
    conn = sqlite3.connect(store.db_path)
    conn.execute("UPDATE vectors SET vector = ? WHERE id = ?", (b"\x00\x01\x02", "bad"))
    conn.commit()
    conn.close()

    results = store.query(normalize([1.0, 0.0]), top_k=5)

    assert [result.id for result in results] == ["good"]
    assert store.verify_integrity() == ["bad"]

    store.reset_collection()
    assert store.verify_integrity() == []
    assert store.count() == 0
