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
Search methods.

A method is built over the record list it is given and keeps referring to
that list by position, so records must not be reordered while it lives.

Topology is saved as a JSON descriptor at ``path``. Methods with a native
payload write it next to the descriptor.
"""

import json
import logging
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Type

import numpy as np

try:  # pragma: no cover - optional dependency
    import hnswlib
except ImportError:  # pragma: no cover - handled at runtime
    hnswlib = None  # type: ignore[assignment]

from ..types import DataEncoding
from .base import EngineError, ParamReader, SpaceObject
from .queue import ResultQueue
from .spaces import Space

logger = logging.getLogger(__name__)

DESCRIPTOR_FORMAT = "simbridge-topology"
DESCRIPTOR_VERSION = 1


def read_topology_descriptor(path: str) -> Dict[str, Any]:
    """Read and sanity-check the descriptor written by :meth:`Method.save_index`."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            descriptor = json.load(f)
    except json.JSONDecodeError as exc:
        raise EngineError(f"{path} is not a topology descriptor: {exc}") from None
    if not isinstance(descriptor, dict) or descriptor.get("format") != DESCRIPTOR_FORMAT:
        raise EngineError(f"{path} is not a topology descriptor")
    if descriptor.get("version") != DESCRIPTOR_VERSION:
        raise EngineError(f"Unsupported descriptor version {descriptor.get('version')!r}")
    return descriptor


class Method:
    """Base search method."""

    name: str = ""
    QUERY_TIME_PARAMS: FrozenSet[str] = frozenset()

    def __init__(self, space: Space, objects: List[SpaceObject], print_progress: bool = False):
        self.space = space
        self.objects = objects
        self.print_progress = print_progress

    def accepts_query_param(self, name: str) -> bool:
        return name in self.QUERY_TIME_PARAMS

    def create_index(self, params: Sequence[str]) -> None:
        raise NotImplementedError

    def search(self, query: SpaceObject, k: int) -> ResultQueue:
        raise NotImplementedError

    def range_search(self, query: SpaceObject, radius: float) -> ResultQueue:
        raise EngineError(f"Range search is not supported by method {self.name}")

    def set_query_time_params(self, params: Sequence[str]) -> None:
        reader = ParamReader(params)
        self._apply_query_time_params(reader)
        reader.check_unused()

    def _apply_query_time_params(self, reader: ParamReader) -> None:
        pass

    def reset_query_time_params(self) -> None:
        self.set_query_time_params([])

    def memory_usage(self) -> int:
        return 0

    # -------------------------------------------------------------------------
    # Topology persistence
    # -------------------------------------------------------------------------

    def _descriptor(self) -> Dict[str, Any]:
        return {}

    def _save_payload(self, path: str) -> None:
        pass

    def _load_payload(self, path: str, descriptor: Dict[str, Any]) -> None:
        pass

    def save_index(self, path: str) -> None:
        descriptor = {
            "format": DESCRIPTOR_FORMAT,
            "version": DESCRIPTOR_VERSION,
            "method": self.name,
            "space": self.space.name,
            "space_params": self.space.params,
            "data_qty": len(self.objects),
        }
        descriptor.update(self._descriptor())
        self._save_payload(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(descriptor, f)

    def load_index(self, path: str) -> None:
        descriptor = read_topology_descriptor(path)
        if METHODS.get(descriptor.get("method")) is not type(self):
            raise EngineError(f"Descriptor was written by method {descriptor.get('method')!r}, not {self.name}")
        if descriptor.get("space") != self.space.name:
            raise EngineError(f"Descriptor was written for space {descriptor.get('space')!r}, not {self.space.name}")
        self._load_payload(path, descriptor)


# =============================================================================
# Exact search
# =============================================================================

class BruteForceSearch(Method):
    """Exact scan over every record."""

    name = "brute_force"

    def __init__(self, space: Space, objects: List[SpaceObject], print_progress: bool = False):
        super().__init__(space, objects, print_progress)
        self._prepared: Any = None

    def create_index(self, params: Sequence[str]) -> None:
        ParamReader(params).check_unused()
        self._refresh()

    def _refresh(self) -> None:
        self._prepared = self.space.prepare(self.objects)
        if self.print_progress:
            logger.info("brute_force: indexed %d records", len(self.objects))

    def _distances(self, query: SpaceObject) -> np.ndarray:
        return self.space.distances(query, self.objects, self._prepared)

    def search(self, query: SpaceObject, k: int) -> ResultQueue:
        queue = ResultQueue(k)
        if not self.objects or k == 0:
            return queue
        dists = self._distances(query)
        if k < len(dists):
            candidates = np.sort(np.argpartition(dists, k - 1)[:k])
        else:
            candidates = np.arange(len(dists))
        for pos in candidates:
            queue.push(dists[pos], self.objects[pos].id)
        return queue

    def range_search(self, query: SpaceObject, radius: float) -> ResultQueue:
        queue = ResultQueue()
        if not self.objects:
            return queue
        dists = self._distances(query)
        for pos in np.nonzero(dists <= radius)[0]:
            queue.push(dists[pos], self.objects[pos].id)
        return queue

    def _load_payload(self, path: str, descriptor: Dict[str, Any]) -> None:
        expected = descriptor.get("data_qty", 0)
        if expected != len(self.objects):
            raise EngineError(
                f"brute_force topology expects {expected} records, {len(self.objects)} are loaded"
            )
        self._refresh()

    def memory_usage(self) -> int:
        return int(getattr(self._prepared, "nbytes", 0))


# =============================================================================
# HNSW (hnswlib)
# =============================================================================

# Engine space name -> (hnswlib space, conversion to engine distance)
_HNSW_SPACES = {
    "l2": ("l2", lambda d: float(np.sqrt(max(d, 0.0)))),
    "cosinesimil": ("cosine", lambda d: float(max(d, 0.0))),
    "negdotprod": ("ip", lambda d: float(d) - 1.0),
}


def _require_hnswlib():
    if hnswlib is None:  # pragma: no cover - dependency missing runtime path
        raise EngineError(
            "hnswlib is required for the hnsw method. Install it with 'pip install simbridge[hnsw]'."
        )
    return hnswlib


class HnswSearch(Method):
    """Navigable small-world graph over dense float records."""

    name = "hnsw"
    QUERY_TIME_PARAMS = frozenset({"efSearch"})

    DEFAULT_M = 16
    DEFAULT_EF_CONSTRUCTION = 200
    DEFAULT_EF_SEARCH = 10
    DEFAULT_SEED = 100

    def __init__(self, space: Space, objects: List[SpaceObject], print_progress: bool = False):
        super().__init__(space, objects, print_progress)
        if space.encoding != DataEncoding.DENSE_FLOAT or space.name not in _HNSW_SPACES:
            raise EngineError(
                f"hnsw supports spaces {sorted(_HNSW_SPACES)}, not {space.name}"
            )
        self._hnsw_space, self._convert = _HNSW_SPACES[space.name]
        self._index = None
        self._ids: Optional[np.ndarray] = None
        self._dim = 0
        self._m = self.DEFAULT_M
        self._ef_construction = self.DEFAULT_EF_CONSTRUCTION
        self._ef_search = self.DEFAULT_EF_SEARCH

    def create_index(self, params: Sequence[str]) -> None:
        reader = ParamReader(params)
        self._m = reader.get_int("M", self.DEFAULT_M)
        self._ef_construction = reader.get_int("efConstruction", self.DEFAULT_EF_CONSTRUCTION)
        threads = reader.get_int("indexThreadQty", -1)
        seed = reader.get_int("randomSeed", self.DEFAULT_SEED)
        reader.check_unused()
        if self._m < 2 or self._ef_construction < 1:
            raise EngineError(f"Invalid hnsw parameters M={self._m} efConstruction={self._ef_construction}")

        lib = _require_hnswlib()
        self._ids = np.array([obj.id for obj in self.objects], dtype=np.int32)
        if not self.objects:
            self._index = None
            return

        data = self.space.prepare(self.objects)
        self._dim = int(data.shape[1])
        index = lib.Index(space=self._hnsw_space, dim=self._dim)
        index.init_index(
            max_elements=len(self.objects),
            ef_construction=self._ef_construction,
            M=self._m,
            random_seed=seed,
        )
        index.add_items(data, np.arange(len(self.objects)), num_threads=threads)
        index.set_ef(self._ef_search)
        self._index = index
        if self.print_progress:
            logger.info("hnsw: built graph over %d records (dim=%d, M=%d)", len(self.objects), self._dim, self._m)

    def _apply_query_time_params(self, reader: ParamReader) -> None:
        ef = reader.get_int("efSearch", self.DEFAULT_EF_SEARCH)
        if ef < 1:
            raise EngineError(f"efSearch must be >= 1, got {ef}")
        self._ef_search = ef
        if self._index is not None:
            self._index.set_ef(ef)

    def search(self, query: SpaceObject, k: int) -> ResultQueue:
        queue = ResultQueue(k)
        if self._index is None or k == 0:
            return queue
        q = query.data
        if q.shape[0] != self._dim:
            raise EngineError(f"Query dimension {q.shape[0]} does not match data dimension {self._dim}")
        count = min(k, self._index.get_current_count())
        labels, dists = self._index.knn_query(q.reshape(1, -1), k=count, num_threads=1)
        for label, dist in zip(labels[0], dists[0]):
            queue.push(self._convert(dist), int(self._ids[int(label)]))
        return queue

    def _descriptor(self) -> Dict[str, Any]:
        return {
            "hnsw_space": self._hnsw_space,
            "dim": self._dim,
            "M": self._m,
            "efConstruction": self._ef_construction,
            "ids": [] if self._ids is None else self._ids.tolist(),
        }

    def _save_payload(self, path: str) -> None:
        if self._index is not None:
            self._index.save_index(path + ".hnsw")

    def _load_payload(self, path: str, descriptor: Dict[str, Any]) -> None:
        self._ids = np.array(descriptor.get("ids", []), dtype=np.int32)
        self._dim = int(descriptor.get("dim", 0))
        self._m = int(descriptor.get("M", self.DEFAULT_M))
        self._ef_construction = int(descriptor.get("efConstruction", self.DEFAULT_EF_CONSTRUCTION))
        if not len(self._ids):
            self._index = None
            return
        lib = _require_hnswlib()
        index = lib.Index(space=self._hnsw_space, dim=self._dim)
        index.load_index(path + ".hnsw", max_elements=len(self._ids))
        index.set_ef(self._ef_search)
        self._index = index

    def memory_usage(self) -> int:
        if self._index is None:
            return 0
        per_element = self._dim * 4 + self._m * 2 * 4 + 8
        return int(self._index.get_current_count() * per_element)


METHODS: Dict[str, Type[Method]] = {
    "brute_force": BruteForceSearch,
    "seq_search": BruteForceSearch,
    "hnsw": HnswSearch,
}
