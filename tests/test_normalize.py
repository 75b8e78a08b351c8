"""
Embedding normalization: every supported input becomes a NumericVector with exact values.
"""

import array

import numpy as np
import pytest

from hta_forest.core.errors import VectorFormatError
from hta_forest.vector.normalize import NumericVector, RawSequence, TypedBuffer, classify, normalize


def test_plain_list():
    vector = normalize([0.1, 0.2, 0.3])
    assert isinstance(vector, NumericVector)
    assert vector.tolist() == [0.1, 0.2, 0.3]
    assert vector.dimension == 3
    assert type(vector.tolist()) is list
    assert all(type(value) is float for value in vector.tolist())


def test_integers_become_floats():
    assert normalize((1, 2, 3)).tolist() == [1.0, 2.0, 3.0]


@pytest.mark.parametrize("dtype", [np.float64, np.float32, np.int32, np.int64, np.uint8])
def test_typed_numpy_buffers(dtype):
    source = np.array([1, 2, 3], dtype=dtype)
    assert normalize(source).tolist() == [1.0, 2.0, 3.0]


def test_float64_values_are_exact():
    source = np.array([0.1, 1e-300, 123456789.123456789], dtype=np.float64)
    assert normalize(source).tolist() == source.tolist()


def test_float32_buffer_keeps_its_exact_values():
    source = np.array([0.1, 0.2], dtype=np.float32)
    assert normalize(source).tolist() == [float(v) for v in source]


def test_array_module_and_memoryview():
    source = array.array("d", [0.5, 0.25])
    assert normalize(source).tolist() == [0.5, 0.25]
    assert normalize(memoryview(source)).tolist() == [0.5, 0.25]


def test_nested_and_ragged_input_is_flattened_in_order():
    assert normalize([[1, 2], [3], [[4, 5]]]).tolist() == [1.0, 2.0, 3.0, 4.0, 5.0]


def test_two_dimensional_array_is_flattened():
    assert normalize(np.array([[1.0, 2.0], [3.0, 4.0]])).tolist() == [1.0, 2.0, 3.0, 4.0]


def test_mixed_nested_numpy_values():
    assert normalize([np.float32(0.5), np.array([1, 2]), (3,)]).tolist() == [0.5, 1.0, 2.0, 3.0]


def test_object_array():
    source = np.array([1, 2.5, np.int64(3)], dtype=object)
    assert normalize(source).tolist() == [1.0, 2.5, 3.0]


@pytest.mark.parametrize("source", [
    [0.1, 0.2, 0.3],
    np.array([0.1, 0.2, 0.3], dtype=np.float32),
    [[1, 2], [3]],
    array.array("f", [1.5, 2.5]),
])
def test_idempotent(source):
    once = normalize(source)
    twice = normalize(once)
    assert twice.tolist() == once.tolist()
    assert twice == once


def test_normalized_vector_is_returned_unchanged():
    vector = normalize([1.0, 2.0])
    assert normalize(vector) is vector


def test_vector_is_immutable():
    vector = normalize(np.array([1.0, 2.0]))
    with pytest.raises(ValueError):
        vector._values[0] = 5.0


def test_source_buffer_changes_do_not_leak():
    source = np.array([1.0, 2.0])
    vector = normalize(source)
    source[0] = 99.0
    assert vector.tolist() == [1.0, 2.0]


def test_dimension_check():
    assert normalize([1, 2, 3], dimension=3).dimension == 3
    with pytest.raises(VectorFormatError):
        normalize([1, 2, 3], dimension=4)


@pytest.mark.parametrize("bad", [
    None,
    [],
    np.array([]),
    "0.1,0.2",
    b"\x00\x01",
    [0.1, "x"],
    [True, False],
    [0.1, None],
    [float("nan"), 1.0],
    [float("inf")],
    {"a": 1},
    np.array(["a", "b"]),
    np.array([1 + 2j]),
])
def test_invalid_input_raises(bad):
    with pytest.raises(VectorFormatError):
        normalize(bad)


def test_format_error_is_value_error():
    with pytest.raises(ValueError):
        normalize([])


def test_classify_variants():
    assert isinstance(classify([1, 2]), RawSequence)
    assert isinstance(classify(np.zeros(2)), TypedBuffer)
    assert isinstance(classify(array.array("d", [1.0])), TypedBuffer)
    vector = normalize([1.0])
    assert classify(vector) is vector


def test_numeric_vector_helpers():
    vector = normalize([1.0, 2.0, 3.0, 4.0, 5.0])
    assert len(vector) == 5
    assert list(vector) == [1.0, 2.0, 3.0, 4.0, 5.0]
    assert vector.to_numpy(np.float32).dtype == np.float32
    assert hash(vector) == hash(normalize([1, 2, 3, 4, 5]))
    assert "dimension=5" in repr(vector)
