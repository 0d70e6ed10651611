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
Distance spaces.

A space fixes the record layout and the distance function. Each one is
registered under its name together with its canonical distance kind and
encoding; the registry is built once at import.
"""

from typing import Any, Dict, List, Optional, Sequence, Type

import numpy as np

from ..types import (
    DENSE_BYTE_DTYPE,
    DENSE_FLOAT_DTYPE,
    SPARSE_ELEM_DTYPE,
    DataEncoding,
    DistanceKind,
)
from . import storage
from .base import BorrowedObject, EngineError, OwnedObject, ParamReader, SpaceObject


class Space:
    """Base space. Constructors a space cannot honour raise :class:`EngineError`."""

    name: str = ""
    distance_kind: DistanceKind = DistanceKind.FLOAT
    encoding: DataEncoding = DataEncoding.DENSE_FLOAT

    def __init__(self, params: Optional[Sequence[str]] = None):
        self.params: List[str] = list(params or ())
        reader = ParamReader(self.params)
        self._configure(reader)
        reader.check_unused()

    def _configure(self, reader: ParamReader) -> None:
        pass

    def supports(self, encoding: DataEncoding) -> bool:
        return encoding == self.encoding

    def _unsupported(self, what: str):
        return EngineError(f"Space {self.name} cannot construct {what}")

    @staticmethod
    def _wrap(object_id: int, data: Any, borrowed: bool) -> SpaceObject:
        if borrowed:
            return BorrowedObject(object_id, data)
        return OwnedObject(object_id, data)

    # -------------------------------------------------------------------------
    # Record constructors
    # -------------------------------------------------------------------------

    def create_dense_vector(self, object_id: int, vector: np.ndarray, borrowed: bool = False) -> SpaceObject:
        raise self._unsupported("dense float vectors")

    def create_sparse_vector(self, object_id: int, elements: np.ndarray, borrowed: bool = False) -> SpaceObject:
        raise self._unsupported("sparse vectors")

    def create_byte_vector(self, object_id: int, vector: np.ndarray, borrowed: bool = False) -> SpaceObject:
        raise self._unsupported("byte vectors")

    def create_string(self, object_id: int, data: Any, borrowed: bool = False) -> SpaceObject:
        raise self._unsupported("strings")

    def object_from_payload(self, object_id: int, payload: bytes) -> SpaceObject:
        """Rebuild an owned record from its serialized payload."""
        raise NotImplementedError

    # -------------------------------------------------------------------------
    # Distances
    # -------------------------------------------------------------------------

    def distance(self, a: SpaceObject, b: SpaceObject):
        raise NotImplementedError

    def index_time_distance(self, a: SpaceObject, b: SpaceObject):
        return self.distance(a, b)

    def prepare(self, objects: Sequence[SpaceObject]) -> Any:
        """Precompute whatever speeds up :meth:`distances`. ``None`` if nothing."""
        return None

    def distances(self, query: SpaceObject, objects: Sequence[SpaceObject], prepared: Any = None) -> np.ndarray:
        """Distance from ``query`` to every object, in object order."""
        dtype = np.float32 if self.distance_kind == DistanceKind.FLOAT else np.int64
        return np.fromiter(
            (self.distance(obj, query) for obj in objects),
            dtype=dtype,
            count=len(objects),
        )

    # -------------------------------------------------------------------------
    # Object vector I/O
    # -------------------------------------------------------------------------

    def write_object_vector(self, objects: Sequence[SpaceObject], path: str) -> None:
        storage.write_objects(path, ((obj.id, obj.tobytes()) for obj in objects), len(objects))

    def read_object_vector(self, path: str) -> List[SpaceObject]:
        return [self.object_from_payload(object_id, payload) for object_id, payload in storage.read_objects(path)]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, params={self.params!r})"


# =============================================================================
# Dense float spaces
# =============================================================================

class DenseVectorSpace(Space):
    encoding = DataEncoding.DENSE_FLOAT
    _dtype = DENSE_FLOAT_DTYPE

    def create_dense_vector(self, object_id: int, vector: np.ndarray, borrowed: bool = False) -> SpaceObject:
        if vector.dtype != self._dtype or vector.ndim != 1:
            raise EngineError(f"{self.name} expects a 1-D {self._dtype} vector")
        return self._wrap(object_id, vector, borrowed)

    def object_from_payload(self, object_id: int, payload: bytes) -> SpaceObject:
        return OwnedObject(object_id, np.frombuffer(payload, dtype=self._dtype))

    def _matrix_distances(self, query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def distance(self, a: SpaceObject, b: SpaceObject):
        return self.distances(b, [a])[0].item()

    def prepare(self, objects: Sequence[SpaceObject]) -> Optional[np.ndarray]:
        if not objects:
            return None
        try:
            return np.stack([obj.data for obj in objects])
        except ValueError as exc:
            raise EngineError(f"Records of {self.name} differ in dimension: {exc}") from None

    def distances(self, query: SpaceObject, objects: Sequence[SpaceObject], prepared: Any = None) -> np.ndarray:
        matrix = prepared if prepared is not None else self.prepare(objects)
        if matrix is None:
            return np.empty(0, dtype=np.float32)
        q = query.data
        if q.shape[0] != matrix.shape[1]:
            raise EngineError(f"Query dimension {q.shape[0]} does not match data dimension {matrix.shape[1]}")
        return self._matrix_distances(q, matrix)


class L2Space(DenseVectorSpace):
    name = "l2"

    def _matrix_distances(self, query, matrix):
        diff = matrix - query
        return np.sqrt(np.einsum("ij,ij->i", diff, diff)).astype(np.float32)


class L1Space(DenseVectorSpace):
    name = "l1"

    def _matrix_distances(self, query, matrix):
        return np.abs(matrix - query).sum(axis=1).astype(np.float32)


class LInfSpace(DenseVectorSpace):
    name = "linf"

    def _matrix_distances(self, query, matrix):
        return np.abs(matrix - query).max(axis=1).astype(np.float32)


def _cosine(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    q = query.astype(np.float64)
    m = matrix.astype(np.float64)
    denom = np.linalg.norm(m, axis=1) * np.linalg.norm(q)
    dots = m @ q
    # Zero vectors have no direction; treat them as orthogonal.
    sims = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
    return np.clip(sims, -1.0, 1.0)


class CosineSpace(DenseVectorSpace):
    name = "cosinesimil"

    def _matrix_distances(self, query, matrix):
        return np.maximum(1.0 - _cosine(query, matrix), 0.0).astype(np.float32)


class AngularSpace(DenseVectorSpace):
    name = "angulardist"

    def _matrix_distances(self, query, matrix):
        return np.arccos(_cosine(query, matrix)).astype(np.float32)


class NegDotProductSpace(DenseVectorSpace):
    name = "negdotprod"

    def _matrix_distances(self, query, matrix):
        return (-(matrix.astype(np.float64) @ query.astype(np.float64))).astype(np.float32)


# =============================================================================
# Sparse float spaces
# =============================================================================

def _sparse_dot(a: np.ndarray, b: np.ndarray) -> float:
    _, ia, ib = np.intersect1d(a["id"], b["id"], assume_unique=True, return_indices=True)
    return float(np.dot(a["value"][ia].astype(np.float64), b["value"][ib].astype(np.float64)))


def _sparse_cosine(a: np.ndarray, b: np.ndarray) -> float:
    denom = float(np.linalg.norm(a["value"].astype(np.float64)) * np.linalg.norm(b["value"].astype(np.float64)))
    if denom == 0.0:
        return 0.0
    return min(1.0, max(-1.0, _sparse_dot(a, b) / denom))


class SparseVectorSpace(Space):
    encoding = DataEncoding.SPARSE_FLOAT

    def create_sparse_vector(self, object_id: int, elements: np.ndarray, borrowed: bool = False) -> SpaceObject:
        if elements.dtype != SPARSE_ELEM_DTYPE:
            raise EngineError(f"{self.name} expects (id, value) pairs of dtype {SPARSE_ELEM_DTYPE}")
        return self._wrap(object_id, elements, borrowed)

    def object_from_payload(self, object_id: int, payload: bytes) -> SpaceObject:
        return OwnedObject(object_id, np.frombuffer(payload, dtype=SPARSE_ELEM_DTYPE))

    def _pair_distance(self, a: np.ndarray, b: np.ndarray) -> float:
        raise NotImplementedError

    def distance(self, a: SpaceObject, b: SpaceObject) -> float:
        return float(np.float32(self._pair_distance(a.data, b.data)))


class SparseCosineSpace(SparseVectorSpace):
    name = "cosinesimil_sparse"

    def _pair_distance(self, a, b):
        return max(0.0, 1.0 - _sparse_cosine(a, b))


class SparseAngularSpace(SparseVectorSpace):
    name = "angulardist_sparse"

    def _pair_distance(self, a, b):
        return float(np.arccos(_sparse_cosine(a, b)))


class SparseNegDotProductSpace(SparseVectorSpace):
    name = "negdotprod_sparse"

    def _pair_distance(self, a, b):
        return -_sparse_dot(a, b)


# =============================================================================
# Integer-distance spaces
# =============================================================================

class SiftL2SqrSpace(DenseVectorSpace):
    """Squared L2 over unsigned byte vectors, as used for SIFT descriptors."""

    name = "l2sqr_sift"
    distance_kind = DistanceKind.INT
    encoding = DataEncoding.DENSE_BYTE
    _dtype = DENSE_BYTE_DTYPE

    def create_dense_vector(self, object_id, vector, borrowed=False):
        raise self._unsupported("dense float vectors")

    def create_byte_vector(self, object_id: int, vector: np.ndarray, borrowed: bool = False) -> SpaceObject:
        return DenseVectorSpace.create_dense_vector(self, object_id, vector, borrowed)

    def _matrix_distances(self, query, matrix):
        diff = matrix.astype(np.int64) - query.astype(np.int64)
        return np.einsum("ij,ij->i", diff, diff)

    def distances(self, query, objects, prepared=None):
        if not objects and prepared is None:
            return np.empty(0, dtype=np.int64)
        return super().distances(query, objects, prepared)


def levenshtein(a: bytes, b: bytes) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


class LevenshteinSpace(Space):
    name = "leven"
    distance_kind = DistanceKind.INT
    encoding = DataEncoding.STRING

    def create_string(self, object_id: int, data: Any, borrowed: bool = False) -> SpaceObject:
        if borrowed:
            return BorrowedObject(object_id, memoryview(data).cast("B"))
        return OwnedObject(object_id, data)

    def object_from_payload(self, object_id: int, payload: bytes) -> SpaceObject:
        return OwnedObject(object_id, payload)

    def distance(self, a: SpaceObject, b: SpaceObject) -> int:
        return levenshtein(bytes(a.data), bytes(b.data))


# =============================================================================
# Registry
# =============================================================================

SPACES: Dict[str, Type[Space]] = {
    cls.name: cls
    for cls in (
        L2Space,
        L1Space,
        LInfSpace,
        CosineSpace,
        AngularSpace,
        NegDotProductSpace,
        SparseCosineSpace,
        SparseAngularSpace,
        SparseNegDotProductSpace,
        SiftL2SqrSpace,
        LevenshteinSpace,
    )
}
