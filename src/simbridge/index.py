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
Index Handle

The handle callers hold. It pairs a fixed :class:`IndexHeader` with the body
selected for that header and walks the state machine::

    CREATED --build--> BUILT --reset--> CREATED
       \\                 |
        `---destroy------+----> DESTROYED

Mutation (adding records, build, reset) must come from one thread with no
concurrent readers. Once built, queries may run from many threads; there is
no internal locking.

Example:
    >>> index = Index.create("l2", method="brute_force")
    >>> index.add_data_point_batch(np.random.rand(100, 16).astype(np.float32))
    100
    >>> index.build()
    >>> ids, dists = index.knn_query(np.zeros(16, dtype=np.float32), k=5)
    >>> index.destroy()
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from . import engine
from .allocator import Allocator, ForeignBuffer, default_allocator
from .config import get_config, validate_thread_pool_size
from .construction import (
    batch_ids,
    check_id,
    iter_dense_rows,
    iter_pointer_records,
    iter_sparse_records,
    record_counts,
)
from .dispatch import IndexBody, create_body
from .engine import EngineError, ResultQueue
from .error_channel import boundary
from .errors import (
    BufferTooSmallError,
    ErrorCode,
    IndexBuildError,
    IndexNotBuiltError,
    InvalidArgumentError,
    NullPointerError,
    SpaceIncompatibleError,
)
from .params import ParamSet
from .results import ResultBuffer, drain_into
from .types import (
    CONVENTIONAL_DISTANCE_KIND,
    DENSE_FLOAT_DTYPE,
    SPARSE_ELEM_DTYPE,
    DataEncoding,
    DistanceKind,
    IndexHeader,
    IndexState,
)

logger = logging.getLogger(__name__)

Params = Union[None, ParamSet, Sequence[str], Mapping[str, Any]]

DEFAULT_METHOD = "hnsw"


def param_list(params: Params) -> List[str]:
    """Normalise a parameter argument to a list of ``name=value`` strings."""
    if params is None:
        return []
    if isinstance(params, ParamSet):
        return params.as_list()
    if isinstance(params, Mapping):
        with ParamSet.from_dict(params) as param_set:
            return param_set.as_list()
    if isinstance(params, str):
        return [params]
    return [str(item) for item in params]


def resolve_header(space_name: str, encoding: DataEncoding, distance_kind: Optional[DistanceKind]) -> IndexHeader:
    """
    Pick the header for ``space_name``.

    The space registry maps each name to one canonical distance kind. A
    different requested kind is replaced by the canonical one.

    Raises:
        SpaceIncompatibleError: unknown space, or one that does not hold
            ``encoding`` records
    """
    encoding = DataEncoding(encoding)
    info = engine.lookup_space(space_name)
    if info is None:
        raise SpaceIncompatibleError(f"Unknown space: {space_name!r}")
    if info.encoding != encoding:
        raise SpaceIncompatibleError(
            f"space {space_name} holds {info.encoding.name} records, not {encoding.name}"
        )
    requested = CONVENTIONAL_DISTANCE_KIND[encoding] if distance_kind is None else DistanceKind(distance_kind)
    if requested != info.distance_kind:
        logger.info(
            "space %s is registered with %s distances; ignoring requested %s",
            space_name, info.distance_kind.name, requested.name,
        )
    return IndexHeader(encoding, info.distance_kind)


class Index:
    """
    Handle to one similarity-search index.

    Create with :meth:`create` (or :meth:`load`), not the constructor.
    """

    def __init__(self, header: IndexHeader, body: IndexBody, allocator: Allocator):
        self._header = header
        self._body: Optional[IndexBody] = body
        self._allocator = allocator
        self._state = IndexState.CREATED
        self._thread_pool_size = get_config().thread_pool_size
        self._query_params: Optional[List[str]] = None

    @classmethod
    @boundary("Index created successfully")
    def create(
        cls,
        space_name: str,
        space_params: Params = None,
        method: str = DEFAULT_METHOD,
        encoding: DataEncoding = DataEncoding.DENSE_FLOAT,
        distance_kind: Optional[DistanceKind] = None,
        allocator: Optional[Allocator] = None,
    ) -> "Index":
        """
        Create an empty index.

        Args:
            space_name: Registered space, e.g. ``"l2"`` or ``"leven"``
            space_params: Space parameters (ParamSet, list or dict)
            method: Search method built later by :meth:`build`
            encoding: Record encoding
            distance_kind: Defaults to the conventional kind for ``encoding``
            allocator: Allocator for every buffer handed back to the caller

        Raises:
            SpaceIncompatibleError: unknown space or encoding mismatch
            InvalidArgumentError: unknown method or rejected space parameters
        """
        if not space_name:
            raise InvalidArgumentError("space name must be non-empty")
        if method not in engine.method_names():
            raise InvalidArgumentError(f"Unknown method {method!r}; available: {engine.method_names()}")
        header = resolve_header(space_name, encoding, distance_kind)
        try:
            space = engine.create_space(space_name, param_list(space_params))
        except EngineError as exc:
            raise InvalidArgumentError(f"space {space_name} rejected its parameters: {exc}") from exc
        index = cls(header, create_body(header, space, space_name, method), allocator or default_allocator())
        logger.info("created index space=%s method=%s encoding=%s", space_name, method, header.encoding.name)
        return index

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    def _live(self) -> IndexBody:
        if self._body is None:
            raise NullPointerError("index has been destroyed")
        return self._body

    def _built(self) -> IndexBody:
        body = self._live()
        if self._state != IndexState.BUILT or body.method is None:
            raise IndexNotBuiltError("index has not been built")
        return body

    def _mutable(self) -> IndexBody:
        body = self._live()
        if self._state == IndexState.BUILT:
            raise InvalidArgumentError("cannot add records to a built index; reset it first")
        return body

    @property
    def header(self) -> IndexHeader:
        return self._header

    @property
    def encoding(self) -> DataEncoding:
        return self._header.encoding

    @property
    def distance_kind(self) -> DistanceKind:
        return self._header.distance_kind

    @property
    def state(self) -> IndexState:
        return self._state

    @property
    def allocator(self) -> Allocator:
        return self._allocator

    @property
    def space_name(self) -> str:
        return self._live().space_name

    @property
    def method_name(self) -> str:
        return self._live().method_name

    @property
    def is_built(self) -> bool:
        return self._state == IndexState.BUILT

    @property
    def body(self) -> IndexBody:
        return self._live()

    def __enter__(self) -> "Index":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._body is not None:
            self.destroy()

    def __len__(self) -> int:
        return len(self._live().records)

    def __repr__(self) -> str:
        if self._body is None:
            return "Index(<destroyed>)"
        return (
            f"Index(space={self._body.space_name!r}, method={self._body.method_name!r}, "
            f"encoding={self.encoding.name}, state={self._state.value}, records={len(self._body.records)})"
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @boundary("Index destroyed successfully")
    def destroy(self) -> None:
        """Release the index. Any later call, including destroy, raises NullPointerError."""
        body = self._live()
        body.clear()
        self._body = None
        self._state = IndexState.DESTROYED
        logger.info("destroyed index space=%s", body.space_name)

    @boundary("Index built successfully", failure=ErrorCode.INDEX_BUILD_FAILED)
    def build(self, method_params: Params = None, print_progress: bool = False) -> None:
        """
        Build the search structure over every record added so far.

        Raises:
            IndexBuildError: already built, or the engine rejected the build
        """
        body = self._live()
        if self._state == IndexState.BUILT:
            raise IndexBuildError("index is already built; reset it before building again")
        method = engine.create_method(body.method_name, body.space, body.records, print_progress)
        method.create_index(param_list(method_params))
        body.method = method
        self._state = IndexState.BUILT
        self._apply_query_params()
        logger.info("built index method=%s records=%d", body.method_name, len(body.records))

    @boundary("Index reset successfully")
    def reset(self) -> None:
        """Drop the method and every record; the space is kept."""
        body = self._live()
        body.clear()
        self._state = IndexState.CREATED
        self._query_params = None
        logger.info("reset index space=%s", body.space_name)

    def _apply_query_params(self) -> None:
        method = self._built().method
        if self._query_params is not None:
            method.set_query_time_params(self._query_params)
        elif method.accepts_query_param("efSearch"):
            method.set_query_time_params([f"efSearch={get_config().ef_search}"])

    def _mark_loaded(self, method: "engine.Method") -> None:
        """Install a method restored from disk and reset its query parameters."""
        body = self._live()
        body.method = method
        self._state = IndexState.BUILT
        self._query_params = None
        method.reset_query_time_params()
        self._apply_query_params()

    @boundary("Query time parameters set successfully", failure=ErrorCode.INVALID_ARGUMENT)
    def set_query_time_params(self, params: Params) -> None:
        body = self._built()
        items = param_list(params)
        body.method.set_query_time_params(items)
        self._query_params = items

    @boundary("Thread pool size set successfully")
    def set_thread_pool_size(self, size: int) -> None:
        self._live()
        self._thread_pool_size = validate_thread_pool_size(size)

    @boundary("Thread pool size retrieved successfully")
    def get_thread_pool_size(self) -> int:
        self._live()
        return self._thread_pool_size

    thread_pool_size = property(get_thread_pool_size, set_thread_pool_size)

    @boundary("Data quantity retrieved successfully")
    def data_qty(self) -> int:
        return len(self._live().records)

    @boundary("Memory usage retrieved successfully")
    def memory_usage(self) -> int:
        """Approximate bytes held by records and the built method."""
        return self._live().memory_usage()

    # -------------------------------------------------------------------------
    # Names
    # -------------------------------------------------------------------------

    @boundary("Space type retrieved successfully")
    def get_space_type(self, allocator: Optional[Allocator] = None) -> ForeignBuffer:
        """Space name copied through ``allocator``; release with :meth:`free_string`."""
        return (allocator or self._allocator).dup_string(self._live().space_name)

    @boundary("Method retrieved successfully")
    def get_method(self, allocator: Optional[Allocator] = None) -> ForeignBuffer:
        return (allocator or self._allocator).dup_string(self._live().method_name)

    @staticmethod
    @boundary("String freed successfully")
    def free_string(buffer: ForeignBuffer) -> None:
        if buffer is None:
            raise NullPointerError("cannot free a null string")
        buffer.free()

    # -------------------------------------------------------------------------
    # Insertion
    # -------------------------------------------------------------------------

    def _insert(self, body: IndexBody, data: Any, element_count: int, sparse_count: int, object_id: int) -> int:
        record = body.make_record(data, element_count, sparse_count, check_id(object_id))
        body.records.append(record)
        return len(body.records) - 1

    @boundary("Data point added successfully")
    def add_data_point(
        self,
        data: Any,
        object_id: Optional[int] = None,
        *,
        element_count: Optional[int] = None,
        sparse_count: Optional[int] = None,
    ) -> int:
        """
        Add one record and return its position.

        Args:
            data: Vector, sparse ``(id, value)`` pairs, string, or raw buffer
            object_id: Record id; defaults to the record's position
            element_count: Element count when ``data`` is a raw buffer
            sparse_count: Pair count when ``data`` is a raw sparse buffer
        """
        body = self._mutable()
        data, element_count, sparse_count = self._record_args(data, element_count, sparse_count)
        if object_id is None:
            object_id = len(body.records)
        pos = self._insert(body, data, element_count, sparse_count, object_id)
        logger.debug("added record id=%s at position %d", object_id, pos)
        return pos

    def _record_args(self, data: Any, element_count: Optional[int], sparse_count: Optional[int]) -> Tuple[Any, int, int]:
        if element_count is None and sparse_count is None:
            return record_counts(self.encoding, data)
        return data, element_count or 0, sparse_count or 0

    def _split(
        self,
        data: Any,
        count: Optional[int],
        element_count: Optional[int],
        sparse_counts: Optional[Sequence[int]],
    ) -> List[Tuple[Any, int, int]]:
        """Split a batch argument into ``(buffer, element_count, sparse_count)`` records."""
        encoding = self.encoding
        if data is None:
            raise InvalidArgumentError("batch data must not be None")
        if encoding in (DataEncoding.DENSE_FLOAT, DataEncoding.DENSE_BYTE) and (
            (isinstance(data, np.ndarray) and data.ndim == 2)
            or isinstance(data, (bytes, bytearray, memoryview))
            or (isinstance(data, np.ndarray) and data.ndim == 1 and count)
        ):
            items = [(row, row.size, 0) for row in iter_dense_rows(encoding, data, count, element_count)]
        elif encoding == DataEncoding.SPARSE_FLOAT:
            items = [(elems, 0, len(elems)) for elems in iter_sparse_records(data, sparse_counts)]
        elif isinstance(data, (str, bytes, bytearray, memoryview)):
            raise InvalidArgumentError(f"{encoding.name} batches must be a sequence of records")
        else:
            items = [
                self._record_args(item, element_count if isinstance(item, (bytes, bytearray, memoryview)) else None, None)
                for item in data
            ]
        if not items:
            raise InvalidArgumentError("batch must contain at least one record")
        return items

    def _insert_batch(self, body: IndexBody, items: Iterable[Tuple[Any, int, int]], ids: Optional[Sequence[int]]) -> int:
        items = list(items)
        object_ids = batch_ids(ids, len(items), len(body.records))
        # Not transactional: records before a failing one stay inserted.
        for (buf, element_count, sparse_count), object_id in zip(items, object_ids):
            self._insert(body, buf, element_count, sparse_count, object_id)
        logger.debug("added %d records, %d total", len(items), len(body.records))
        return len(items)

    @boundary("Data points added successfully")
    def add_data_point_batch(
        self,
        data: Any,
        ids: Optional[Sequence[int]] = None,
        *,
        count: Optional[int] = None,
        element_count: Optional[int] = None,
        sparse_counts: Optional[Sequence[int]] = None,
    ) -> int:
        """
        Add many records in order; returns how many were added.

        ``data`` is a 2-D array (dense and byte encodings), a flat buffer with
        ``count`` and ``element_count``, a sequence of sparse records (or one
        concatenated sparse buffer with ``sparse_counts``), or a sequence of
        strings. Default ids continue from the current record count.

        The batch stops at the first record that fails; earlier records of
        the batch remain inserted.
        """
        body = self._mutable()
        return self._insert_batch(body, self._split(data, count, element_count, sparse_counts), ids)

    @boundary("Data points added successfully")
    def add_data_point_batch_uint8(
        self,
        data: Any,
        ids: Optional[Sequence[int]] = None,
        *,
        count: Optional[int] = None,
        element_count: Optional[int] = None,
    ) -> int:
        """Add unsigned byte vectors (``(N, D)`` uint8 or a flat buffer)."""
        body = self._mutable()
        if self.encoding != DataEncoding.DENSE_BYTE:
            raise SpaceIncompatibleError(f"byte batches need a DENSE_BYTE index, not {self.encoding.name}")
        items = [(row, row.size, 0) for row in iter_dense_rows(self.encoding, data, count, element_count)]
        return self._insert_batch(body, items, ids)

    @boundary("String data points added successfully")
    def add_data_point_batch_string(self, strings: Sequence[Union[str, bytes]], ids: Optional[Sequence[int]] = None) -> int:
        body = self._mutable()
        if self.encoding != DataEncoding.STRING:
            raise SpaceIncompatibleError(f"string batches need a STRING index, not {self.encoding.name}")
        return self._insert_batch(body, self._split(strings, None, None, None), ids)

    @boundary("Data points added successfully")
    def add_data_point_batch_pointers(
        self,
        buffers: Sequence[Any],
        ids: Optional[Sequence[int]] = None,
        *,
        element_count: Optional[int] = None,
        sparse_counts: Optional[Sequence[int]] = None,
    ) -> int:
        """
        Add one record per caller buffer.

        Buffers are read in place during the call and copied into owned
        records; the caller keeps ownership of its memory.
        """
        body = self._mutable()
        items = list(iter_pointer_records(self.encoding, buffers, element_count, sparse_counts))
        if not items:
            raise InvalidArgumentError("batch must contain at least one record")
        return self._insert_batch(body, items, ids)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def _search(self, query: Any, element_count: Optional[int], sparse_count: Optional[int], k: Optional[int], radius: Optional[float]) -> ResultQueue:
        body = self._built()
        data, element_count, sparse_count = self._record_args(query, element_count, sparse_count)
        with body.make_query(data, element_count, sparse_count) as query_object:
            if radius is None:
                return body.method.search(query_object, k)
            return body.method.range_search(query_object, radius)

    @staticmethod
    def _check_k(k: int) -> int:
        if isinstance(k, bool) or not isinstance(k, (int, np.integer)) or k <= 0:
            raise InvalidArgumentError(f"k must be a positive int, got {k!r}")
        return int(k)

    @staticmethod
    def _check_radius(radius: float) -> float:
        radius = float(radius)
        if np.isnan(radius) or radius < 0:
            raise InvalidArgumentError(f"radius must be >= 0, got {radius}")
        return radius

    def _knn_fill(self, query: Any, k: int, result: ResultBuffer, element_count: Optional[int], sparse_count: Optional[int]) -> int:
        if result is None:
            raise NullPointerError("result buffer must not be None")
        result.size = 0
        queue = self._search(query, element_count, sparse_count, self._check_k(k), None)
        return drain_into(queue, result)

    @boundary("KNN query size retrieved successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def knn_query_get_size(self, query: Any, k: int, *, element_count: Optional[int] = None, sparse_count: Optional[int] = None) -> int:
        """Number of results a k-NN query would return. A hint for sizing buffers."""
        return len(self._search(query, element_count, sparse_count, self._check_k(k), None))

    @boundary("KNN query filled successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def knn_query_fill(
        self,
        query: Any,
        k: int,
        result: ResultBuffer,
        *,
        element_count: Optional[int] = None,
        sparse_count: Optional[int] = None,
    ) -> int:
        """
        Run a k-NN query into ``result`` nearest-first and return the count.

        Raises:
            IndexNotBuiltError: index is not built
            BufferTooSmallError: more results than ``result.capacity``;
                ``result.size`` is left at 0
        """
        return self._knn_fill(query, k, result, element_count, sparse_count)

    def _batch_queries(self, queries: Any, element_count: Optional[int], sparse_counts: Optional[Sequence[int]]) -> List[Tuple[Any, int, int]]:
        return self._split(queries, None, element_count, sparse_counts)

    @boundary("Batch KNN query completed successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def knn_query_batch(
        self,
        queries: Any,
        k: int,
        results: Optional[Sequence[ResultBuffer]] = None,
        *,
        element_count: Optional[int] = None,
        sparse_counts: Optional[Sequence[int]] = None,
    ) -> List[ResultBuffer]:
        """
        Run one k-NN query per input on the thread pool.

        Each worker fills only its own result buffer. The first failing query
        (in input order) is raised after all workers finish.
        """
        self._built()
        k = self._check_k(k)
        items = self._batch_queries(queries, element_count, sparse_counts)
        if results is None:
            results = [ResultBuffer(k) for _ in items]
        elif len(results) != len(items):
            raise InvalidArgumentError(f"got {len(results)} result buffers for {len(items)} queries")

        def run(i: int) -> int:
            data, ec, sc = items[i]
            return self._knn_fill(data, k, results[i], ec, sc)

        workers = min(self._thread_pool_size, len(items))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(run, i) for i in range(len(items))]
        for future in futures:
            future.result()
        return list(results)

    @boundary("Range query size retrieved successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def range_query_get_size(self, query: Any, radius: float, *, element_count: Optional[int] = None, sparse_count: Optional[int] = None) -> int:
        return len(self._search(query, element_count, sparse_count, None, self._check_radius(radius)))

    @boundary("Range query filled successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def range_query_fill(
        self,
        query: Any,
        radius: float,
        result: ResultBuffer,
        *,
        element_count: Optional[int] = None,
        sparse_count: Optional[int] = None,
    ) -> int:
        """Every record within ``radius``, nearest-first. Same capacity rules as :meth:`knn_query_fill`."""
        if result is None:
            raise NullPointerError("result buffer must not be None")
        result.size = 0
        queue = self._search(query, element_count, sparse_count, None, self._check_radius(radius))
        return drain_into(queue, result)

    def knn_query(self, query: Any, k: int = 10, **counts) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(ids, distances)`` of the ``k`` nearest records."""
        result = ResultBuffer(self._check_k(k))
        self.knn_query_fill(query, k, result, **counts)
        return result.results()

    def range_query(self, query: Any, radius: float, **counts) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``(ids, distances)`` of every record within ``radius``."""
        size = self.range_query_get_size(query, radius, **counts)
        result = ResultBuffer(size)
        try:
            self.range_query_fill(query, radius, result, **counts)
        except BufferTooSmallError as exc:
            # Result count changed between the two calls; size to the real count.
            result = ResultBuffer(exc.required)
            self.range_query_fill(query, radius, result, **counts)
        return result.results()

    @boundary("Distance computed successfully", failure=ErrorCode.QUERY_EXECUTION_FAILED)
    def get_distance(self, pos1: int, pos2: int) -> float:
        """Engine distance between the records at two positions."""
        body = self._live()
        return float(body.space.index_time_distance(body.record(pos1), body.record(pos2)))

    # -------------------------------------------------------------------------
    # Record access
    # -------------------------------------------------------------------------

    @boundary("Data point size retrieved successfully")
    def get_data_point_size(self, pos: int) -> int:
        """Element count at ``pos``: floats, sparse pairs, bytes or characters."""
        return self._live().element_count(pos)

    @boundary("Data point filled successfully")
    def get_data_point_fill(self, pos: int, out: Any) -> int:
        """
        Copy the record at ``pos`` into ``out`` and return the element count.

        ``out`` is a writeable numpy array of the record dtype (uint8 or a
        bytearray for strings) with room for :meth:`get_data_point_size`
        elements.

        Raises:
            BufferTooSmallError: ``out`` is too short
        """
        body = self._live()
        payload = body.payload(pos)
        if out is None:
            raise NullPointerError("output buffer must not be None")
        if isinstance(out, bytearray):
            out = np.frombuffer(out, dtype=np.uint8)
        if not isinstance(out, np.ndarray) or not out.flags["WRITEABLE"]:
            raise InvalidArgumentError("output must be a writeable numpy array or bytearray")
        source = np.frombuffer(payload, dtype=np.uint8) if isinstance(payload, bytes) else payload
        if out.dtype != source.dtype:
            raise InvalidArgumentError(f"output dtype must be {source.dtype}, got {out.dtype}")
        if len(out) < len(source):
            raise BufferTooSmallError(
                f"Output buffer holds {len(out)} elements, record has {len(source)}",
                required=len(source),
                capacity=len(out),
            )
        out[: len(source)] = source
        return len(source)

    def get_data_point(self, pos: int) -> Union[np.ndarray, bytes]:
        """Copy of the record at ``pos``."""
        count = self.get_data_point_size(pos)
        if self.encoding == DataEncoding.STRING:
            out = bytearray(count)
            self.get_data_point_fill(pos, out)
            return bytes(out)
        out = np.empty(count, dtype=self._live().payload_dtype)
        self.get_data_point_fill(pos, out)
        return out

    @boundary("Data point string retrieved successfully")
    def get_data_point_string(self, pos: int, allocator: Optional[Allocator] = None) -> ForeignBuffer:
        """String record at ``pos`` copied through ``allocator``, NUL-terminated."""
        body = self._live()
        if self.encoding != DataEncoding.STRING:
            raise SpaceIncompatibleError(f"index holds {self.encoding.name} records, not strings")
        return (allocator or self._allocator).dup_string(body.payload(pos))

    def _borrow(self, pos: int, encoding: DataEncoding, dtype: np.dtype, allocator: Optional[Allocator]) -> ForeignBuffer:
        body = self._live()
        if self.encoding != encoding:
            raise SpaceIncompatibleError(f"index holds {self.encoding.name} records, not {encoding.name}")
        return (allocator or self._allocator).copy_in(body.payload(pos), dtype=dtype)

    @boundary("Dense data borrowed successfully")
    def borrow_data_dense(self, pos: int, allocator: Optional[Allocator] = None) -> ForeignBuffer:
        """
        Copy the dense vector at ``pos`` into allocator memory.

        The returned buffer's ``free`` releases it; ``as_array()`` views it as
        float32 without a further copy.
        """
        return self._borrow(pos, DataEncoding.DENSE_FLOAT, DENSE_FLOAT_DTYPE, allocator)

    @boundary("Sparse data borrowed successfully")
    def borrow_data_sparse(self, pos: int, allocator: Optional[Allocator] = None) -> ForeignBuffer:
        return self._borrow(pos, DataEncoding.SPARSE_FLOAT, SPARSE_ELEM_DTYPE, allocator)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save(self, path: str, include_data: bool = True) -> None:
        """See :func:`simbridge.persistence.save_index`."""
        from .persistence import save_index
        save_index(self, path, include_data)

    @classmethod
    def load(cls, path: str, *args, **kwargs) -> "Index":
        """See :func:`simbridge.persistence.load_index`."""
        from .persistence import load_index
        return load_index(path, *args, **kwargs)
