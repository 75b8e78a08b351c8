"""
Embedding normalization.

Every embedding crossing the backend boundary is a ``NumericVector``. Inputs
are classified into one of two variants, each with its own conversion:

* ``RawSequence`` - Python lists/tuples, possibly nested or ragged
* ``TypedBuffer`` - numpy arrays, ``array.array`` and ``memoryview`` buffers

Conversion is lossless for float inputs (values are held as float64) and
deterministic; normalizing a ``NumericVector`` returns it unchanged.
"""

import array
import math
from dataclasses import dataclass
from numbers import Real
from typing import Any, Iterator, List, Sequence, Union

import numpy as np

from ..core.errors import VectorFormatError


class NumericVector:
    """Immutable fixed-length float vector with a plain-list conversion."""

    __slots__ = ("_values",)

    def __init__(self, values: np.ndarray):
        values = np.array(values, dtype=np.float64).reshape(-1)
        values.setflags(write=False)
        self._values = values

    @property
    def dimension(self) -> int:
        return int(self._values.shape[0])

    def tolist(self) -> List[float]:
        """Plain ``list[float]``, the shape vector backends require."""
        return self._values.tolist()

    def to_numpy(self, dtype=np.float64) -> np.ndarray:
        return self._values.astype(dtype, copy=True)

    def __len__(self):
        return self.dimension

    def __iter__(self) -> Iterator[float]:
        return iter(self.tolist())

    def __eq__(self, other):
        if not isinstance(other, NumericVector):
            return NotImplemented
        return self.dimension == other.dimension and bool(np.array_equal(self._values, other._values))

    def __hash__(self):
        return hash(self._values.tobytes())

    def __repr__(self):
        preview = ", ".join(f"{v:.4g}" for v in self._values[:4])
        suffix = ", ..." if self.dimension > 4 else ""
        return f"NumericVector([{preview}{suffix}], dimension={self.dimension})"


@dataclass(frozen=True)
class RawSequence:
    items: Sequence[Any]


@dataclass(frozen=True)
class TypedBuffer:
    buffer: np.ndarray


def classify(value: Any) -> Union[NumericVector, RawSequence, TypedBuffer]:
    """Tag an embedding input with the variant that knows how to convert it."""
    if isinstance(value, NumericVector):
        return value
    if value is None:
        raise VectorFormatError("Embedding cannot be None")
    if isinstance(value, (str, bytes, bytearray)):
        raise VectorFormatError(f"Embedding cannot be {type(value).__name__}")
    if isinstance(value, np.ndarray):
        return TypedBuffer(value)
    if isinstance(value, (array.array, memoryview)):
        return TypedBuffer(np.asarray(value))
    if isinstance(value, (list, tuple)):
        return RawSequence(value)
    raise VectorFormatError(f"Unsupported embedding type: {type(value).__name__}")


def _flatten(items: Sequence[Any], out: List[float], path: str):
    for index, item in enumerate(items):
        where = f"{path}[{index}]"
        if isinstance(item, bool) or isinstance(item, np.bool_):
            raise VectorFormatError(f"Invalid embedding value at {where}: {item!r}")
        if isinstance(item, (list, tuple)):
            _flatten(item, out, where)
        elif isinstance(item, np.ndarray):
            out.extend(_from_typed_buffer(TypedBuffer(item)).tolist())
        elif isinstance(item, NumericVector):
            out.extend(item.tolist())
        elif isinstance(item, (Real, np.number)) and not isinstance(item, np.complexfloating):
            out.append(float(item))
        else:
            raise VectorFormatError(f"Invalid embedding value at {where}: {item!r}")


def _from_raw_sequence(variant: RawSequence) -> np.ndarray:
    values: List[float] = []
    _flatten(variant.items, values, "")
    return np.array(values, dtype=np.float64)


def _from_typed_buffer(variant: TypedBuffer) -> np.ndarray:
    buffer = variant.buffer
    if buffer.dtype == object:
        return _from_raw_sequence(RawSequence(buffer.reshape(-1).tolist()))
    if buffer.dtype.kind not in ("i", "u", "f"):
        raise VectorFormatError(f"Unsupported embedding dtype: {buffer.dtype}")
    return buffer.astype(np.float64).reshape(-1)


def normalize(value: Any, dimension: int = None) -> NumericVector:
    """
    Convert any supported embedding representation to a ``NumericVector``.

    Raises ``VectorFormatError`` for empty, non-numeric or non-finite input,
    or when ``dimension`` is given and does not match.
    """
    variant = classify(value)
    if isinstance(variant, NumericVector):
        vector = variant
    elif isinstance(variant, TypedBuffer):
        vector = NumericVector(_from_typed_buffer(variant))
    else:
        vector = NumericVector(_from_raw_sequence(variant))

    if vector.dimension == 0:
        raise VectorFormatError("Embedding must be a non-empty array")

    values = vector.tolist()
    for index, v in enumerate(values):
        if not math.isfinite(v):
            raise VectorFormatError(f"Invalid embedding value at index {index}: {v}")

    if dimension is not None and vector.dimension != dimension:
        raise VectorFormatError(f"Vector dimension {vector.dimension} does not match expected dimension {dimension}")

    return vector
