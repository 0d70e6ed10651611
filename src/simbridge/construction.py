# Copyright 2025 Sushanth (https://github.com/sushanthpy)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Object Construction

Turns caller buffers into engine records, one rule per encoding:

    DENSE_FLOAT   ``element_count`` little-endian float32 values
    SPARSE_FLOAT  ``sparse_count`` (id: uint32, value: float32) pairs, ids
                  strictly increasing; checked before the engine sees them
    DENSE_BYTE    ``element_count`` unsigned bytes
    STRING        ``element_count`` raw bytes, no terminator required

Inserted records are owned copies. Query records are borrowed views over the
caller's buffer and are released when the call that made them returns.
"""

from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import get_config, warn_copy
from .engine import EngineError, Space, SpaceObject
from .errors import (
    InvalidArgumentError,
    InvalidSparseElementError,
    SpaceIncompatibleError,
)
from .types import (
    DENSE_BYTE_DTYPE,
    DENSE_FLOAT_DTYPE,
    INT32_MAX,
    INT32_MIN,
    SPARSE_ELEM_DTYPE,
    DataEncoding,
)

BytesLike = Union[bytes, bytearray, memoryview, np.ndarray]

_ELEMENT_DTYPE = {
    DataEncoding.DENSE_FLOAT: DENSE_FLOAT_DTYPE,
    DataEncoding.SPARSE_FLOAT: SPARSE_ELEM_DTYPE,
    DataEncoding.DENSE_BYTE: DENSE_BYTE_DTYPE,
    DataEncoding.STRING: DENSE_BYTE_DTYPE,
}


# =============================================================================
# Input normalisation
# =============================================================================

def element_dtype(encoding: DataEncoding) -> np.dtype:
    return _ELEMENT_DTYPE[DataEncoding(encoding)]


def check_id(object_id: int) -> int:
    if isinstance(object_id, bool) or not isinstance(object_id, (int, np.integer)):
        raise InvalidArgumentError(f"record id must be an int, got {type(object_id).__name__}")
    object_id = int(object_id)
    if not INT32_MIN <= object_id <= INT32_MAX:
        raise InvalidArgumentError(f"record id {object_id} does not fit in int32")
    return object_id


def as_byte_view(data: Any) -> memoryview:
    """Flat byte view over a bytes-like object without copying."""
    if data is None:
        raise InvalidArgumentError("data must not be None")
    if isinstance(data, str):
        data = data.encode("utf-8")
    if isinstance(data, np.ndarray):
        if not data.flags["C_CONTIGUOUS"]:
            raise InvalidArgumentError("buffer must be C-contiguous")
        return memoryview(data.reshape(-1).view(np.uint8))
    try:
        view = memoryview(data)
    except TypeError:
        raise InvalidArgumentError(f"expected a bytes-like object, got {type(data).__name__}") from None
    if not view.c_contiguous:
        raise InvalidArgumentError("buffer must be C-contiguous")
    return view.cast("B") if view.format != "B" or view.ndim != 1 else view


def coerce_array(array: Any, dtype: np.dtype, what: str, ndim: Optional[int] = None) -> np.ndarray:
    """
    Return ``array`` as a C-contiguous array of ``dtype``.

    A copy of an ndarray input is made (with a :class:`PerformanceWarning`)
    when it has another dtype or layout, unless strict layout is configured,
    in which case the mismatch is an :class:`InvalidArgumentError`. Lists
    and raw buffers are converted silently.
    """
    dtype = np.dtype(dtype)
    if isinstance(array, (bytes, bytearray, memoryview)):
        view = as_byte_view(array)
        if len(view) % dtype.itemsize:
            raise InvalidArgumentError(f"{what}: {len(view)} bytes is not a whole number of {dtype} elements")
        array = np.frombuffer(view, dtype=dtype)
    elif not isinstance(array, np.ndarray):
        try:
            array = np.asarray(array, dtype=dtype)
        except (TypeError, ValueError) as exc:
            raise InvalidArgumentError(f"{what} cannot be converted to {dtype}: {exc}") from None
    if ndim is not None and array.ndim != ndim:
        raise InvalidArgumentError(f"{what} must be {ndim}-D, got {array.ndim}-D")
    if array.dtype == dtype and array.flags["C_CONTIGUOUS"]:
        return array
    if array.dtype.fields is not None:
        raise InvalidArgumentError(f"{what} must have dtype {dtype}, got {array.dtype}")
    if get_config().strict_layout:
        raise InvalidArgumentError(
            f"{what} must be a C-contiguous {dtype} array, got {array.dtype} "
            f"(contiguous={array.flags['C_CONTIGUOUS']})"
        )
    warn_copy(what, stacklevel=4)
    return np.ascontiguousarray(array, dtype=dtype)


def sparse_elements(data: Any) -> np.ndarray:
    """Accept a structured array or a sequence of ``(id, value)`` pairs."""
    if isinstance(data, np.ndarray) and data.dtype == SPARSE_ELEM_DTYPE:
        return np.ascontiguousarray(data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        view = as_byte_view(data)
        if len(view) % SPARSE_ELEM_DTYPE.itemsize:
            raise InvalidSparseElementError(
                f"sparse buffer length {len(view)} is not a multiple of {SPARSE_ELEM_DTYPE.itemsize}"
            )
        return np.frombuffer(view, dtype=SPARSE_ELEM_DTYPE)
    try:
        return np.array([(int(i), float(v)) for i, v in data], dtype=SPARSE_ELEM_DTYPE)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidSparseElementError(f"sparse input must be (id, value) pairs: {exc}") from None


def validate_sparse(elements: np.ndarray) -> None:
    """Reject empty input and ids that are not strictly increasing."""
    if len(elements) == 0:
        raise InvalidSparseElementError("sparse vector must have at least one element")
    ids = elements["id"]
    if len(ids) > 1:
        bad = np.nonzero(ids[1:] <= ids[:-1])[0]
        if len(bad):
            pos = int(bad[0]) + 1
            raise InvalidSparseElementError(
                f"sparse element ids must be strictly increasing: id {int(ids[pos])} "
                f"at position {pos} follows {int(ids[pos - 1])}"
            )


# =============================================================================
# Record construction
# =============================================================================

def _typed_view(view: memoryview, dtype: np.dtype, count: int, what: str) -> np.ndarray:
    needed = count * dtype.itemsize
    if len(view) < needed:
        raise InvalidArgumentError(f"{what}: buffer holds {len(view)} bytes, {needed} needed for {count} elements")
    return np.frombuffer(view, dtype=dtype, count=count)


def create_object(
    space: Space,
    encoding: DataEncoding,
    data: Any,
    element_count: int,
    sparse_count: int,
    object_id: int,
    borrowed: bool = False,
) -> SpaceObject:
    """
    Build one record from raw caller bytes.

    Args:
        space: Engine space that will own the record
        encoding: Encoding of the handle (from its header)
        data: Bytes-like buffer
        element_count: Number of floats/bytes (dense, byte) or string length
        sparse_count: Number of (id, value) pairs (sparse only)
        object_id: Record id; queries pass the sentinel
        borrowed: Build a view valid only for the current call

    Raises:
        InvalidArgumentError: malformed counts or a short buffer
        InvalidSparseElementError: empty or unsorted sparse input
        SpaceIncompatibleError: the space cannot build this encoding
    """
    encoding = DataEncoding(encoding)
    view = as_byte_view(data)

    if encoding == DataEncoding.SPARSE_FLOAT:
        if sparse_count <= 0:
            raise InvalidSparseElementError("sparse vector must have at least one element")
        elements = _typed_view(view, SPARSE_ELEM_DTYPE, sparse_count, "sparse vector")
        validate_sparse(elements)
        return _construct(space.create_sparse_vector, object_id, elements, borrowed, space, encoding)

    if element_count <= 0 and encoding != DataEncoding.STRING:
        raise InvalidArgumentError(f"element count must be > 0, got {element_count}")
    if element_count < 0:
        raise InvalidArgumentError(f"string length must be >= 0, got {element_count}")

    if encoding == DataEncoding.DENSE_FLOAT:
        vector = _typed_view(view, DENSE_FLOAT_DTYPE, element_count, "dense vector")
        return _construct(space.create_dense_vector, object_id, vector, borrowed, space, encoding)
    if encoding == DataEncoding.DENSE_BYTE:
        vector = _typed_view(view, DENSE_BYTE_DTYPE, element_count, "byte vector")
        return _construct(space.create_byte_vector, object_id, vector, borrowed, space, encoding)

    if len(view) < element_count:
        raise InvalidArgumentError(f"string buffer holds {len(view)} bytes, {element_count} requested")
    return _construct(space.create_string, object_id, view[:element_count], borrowed, space, encoding)


def _construct(constructor, object_id, payload, borrowed, space, encoding) -> SpaceObject:
    try:
        return constructor(object_id, payload, borrowed=borrowed)
    except EngineError as exc:
        raise SpaceIncompatibleError(
            f"space {space.name} cannot hold {encoding.name} records: {exc}"
        ) from exc


def record_counts(encoding: DataEncoding, data: Any) -> Tuple[Any, int, int]:
    """
    Derive ``(buffer, element_count, sparse_count)`` from a Python value.

    Arrays, pair sequences and ``str`` are accepted besides raw buffers.
    """
    encoding = DataEncoding(encoding)
    if encoding == DataEncoding.SPARSE_FLOAT:
        elements = sparse_elements(data)
        return elements, 0, len(elements)
    if encoding == DataEncoding.STRING:
        view = as_byte_view(data)
        return view, len(view), 0
    array = coerce_array(data, element_dtype(encoding), "vector", ndim=1)
    return array, array.size, 0


# =============================================================================
# Batches
# =============================================================================

def batch_ids(ids: Optional[Sequence[int]], count: int, start: int) -> List[int]:
    """Explicit ids, or positions continuing from ``start``."""
    if ids is None:
        return [check_id(start + i) for i in range(count)]
    ids = list(np.asarray(ids).ravel().tolist()) if isinstance(ids, np.ndarray) else list(ids)
    if len(ids) != count:
        raise InvalidArgumentError(f"got {len(ids)} ids for {count} records")
    return [check_id(i) for i in ids]


def iter_dense_rows(encoding: DataEncoding, data: Any, count: Optional[int], element_count: Optional[int]) -> Iterator[np.ndarray]:
    """
    Split a batch of dense records into rows.

    ``data`` is either a 2-D array or a flat buffer of ``count`` records of
    ``element_count`` elements each.
    """
    dtype = element_dtype(encoding)
    if isinstance(data, np.ndarray) and data.ndim == 2:
        matrix = coerce_array(data, dtype, "batch", ndim=2)
    else:
        if not count or not element_count:
            raise InvalidArgumentError("flat batch input needs count and element_count > 0")
        flat = coerce_array(data, dtype, "batch")
        if flat.size < count * element_count:
            raise InvalidArgumentError(
                f"batch holds {flat.size} elements, {count * element_count} needed"
            )
        matrix = flat[: count * element_count].reshape(count, element_count)
    if matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise InvalidArgumentError(f"batch must be non-empty, got shape {matrix.shape}")
    return iter(matrix)


def iter_sparse_records(data: Any, sparse_counts: Optional[Sequence[int]]) -> Iterator[np.ndarray]:
    """
    Split a batch of sparse records.

    Either a sequence of per-record inputs, or one concatenated buffer plus
    the number of elements in each record.
    """
    if sparse_counts is None:
        if isinstance(data, (bytes, bytearray, memoryview, np.ndarray)):
            raise InvalidSparseElementError("concatenated sparse input needs per-record sparse_counts")
        return (sparse_elements(record) for record in data)
    elements = sparse_elements(data)
    counts = [int(c) for c in sparse_counts]
    if sum(counts) > len(elements):
        raise InvalidArgumentError(f"sparse_counts total {sum(counts)} exceeds {len(elements)} elements")
    offsets = np.cumsum([0] + counts)
    return (elements[offsets[i]:offsets[i + 1]] for i in range(len(counts)))


def iter_pointer_records(
    encoding: DataEncoding,
    buffers: Iterable[Any],
    element_count: Optional[int],
    sparse_counts: Optional[Sequence[int]],
) -> Iterator[Tuple[memoryview, int, int]]:
    """Per-record buffers, read in place for the duration of the call."""
    buffers = list(buffers)
    if sparse_counts is not None and len(sparse_counts) != len(buffers):
        raise InvalidArgumentError(f"got {len(sparse_counts)} sparse counts for {len(buffers)} buffers")
    for i, buf in enumerate(buffers):
        view = as_byte_view(buf)
        if encoding == DataEncoding.SPARSE_FLOAT:
            if sparse_counts is None:
                raise InvalidSparseElementError("sparse pointer batch needs sparse_counts")
            yield view, 0, int(sparse_counts[i])
        elif encoding == DataEncoding.STRING:
            yield view, len(view) if element_count is None else element_count, 0
        else:
            if not element_count:
                raise InvalidArgumentError("pointer batch needs element_count > 0")
            yield view, element_count, 0
