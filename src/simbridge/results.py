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
Query Result Extraction

Caller-owned parallel ``(id, distance)`` arrays with a fixed capacity, and
the drain that fills them nearest-first from an engine result queue.
"""

from typing import Optional, Tuple

import numpy as np

from .engine import ResultQueue
from .errors import BufferTooSmallError, InvalidArgumentError

ID_DTYPE = np.dtype(np.int32)
DISTANCE_DTYPE = np.dtype(np.float32)


class ResultBuffer:
    """
    Fixed-capacity output for one query.

    After a successful fill ``size <= capacity`` and ``ids[:size]`` /
    ``distances[:size]`` hold the results nearest-first. After a failed fill
    ``size`` is 0.

    Args:
        capacity: Number of slots to allocate
        ids: Optional caller-allocated int32 array (shares its memory)
        distances: Optional caller-allocated float32 array

    Example:
        >>> buf = ResultBuffer(10)
        >>> index.knn_query_fill(query, 10, buf)
        >>> ids, dists = buf.results()
    """

    def __init__(
        self,
        capacity: Optional[int] = None,
        ids: Optional[np.ndarray] = None,
        distances: Optional[np.ndarray] = None,
    ):
        if ids is None and distances is None:
            if capacity is None or capacity < 0:
                raise InvalidArgumentError(f"capacity must be >= 0, got {capacity}")
            ids = np.zeros(capacity, dtype=ID_DTYPE)
            distances = np.zeros(capacity, dtype=DISTANCE_DTYPE)
        elif ids is None or distances is None:
            raise InvalidArgumentError("ids and distances must be supplied together")
        else:
            _check_output(ids, ID_DTYPE, "ids")
            _check_output(distances, DISTANCE_DTYPE, "distances")
            if len(ids) != len(distances):
                raise InvalidArgumentError(
                    f"ids ({len(ids)}) and distances ({len(distances)}) differ in length"
                )
            if capacity is not None and capacity != len(ids):
                raise InvalidArgumentError(f"capacity {capacity} does not match array length {len(ids)}")
        self.ids = ids
        self.distances = distances
        self.size = 0

    @property
    def capacity(self) -> int:
        return len(self.ids)

    def results(self) -> Tuple[np.ndarray, np.ndarray]:
        """Copies of the filled prefix."""
        return self.ids[: self.size].copy(), self.distances[: self.size].copy()

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"ResultBuffer(size={self.size}, capacity={self.capacity})"


def _check_output(array: np.ndarray, dtype: np.dtype, what: str) -> None:
    if not isinstance(array, np.ndarray) or array.ndim != 1:
        raise InvalidArgumentError(f"{what} must be a 1-D numpy array")
    if array.dtype != dtype:
        raise InvalidArgumentError(f"{what} must have dtype {dtype}, got {array.dtype}")
    if not array.flags["C_CONTIGUOUS"] or not array.flags["WRITEABLE"]:
        raise InvalidArgumentError(f"{what} must be C-contiguous and writeable")


def drain_into(queue: ResultQueue, buffer: ResultBuffer) -> int:
    """
    Move every result from ``queue`` into ``buffer`` nearest-first.

    Raises:
        BufferTooSmallError: the queue holds more than ``buffer.capacity``
            results. Nothing is written and ``buffer.size`` is 0.
    """
    buffer.size = 0
    count = len(queue)
    if count == 0:
        return 0
    if count > buffer.capacity:
        raise BufferTooSmallError(
            f"Result buffer too small: {count} results, capacity {buffer.capacity}",
            required=count,
            capacity=buffer.capacity,
        )
    drained = [queue.pop() for _ in range(count)]
    drained.reverse()
    for i, (distance, object_id) in enumerate(drained):
        buffer.ids[i] = object_id
        buffer.distances[i] = distance
    buffer.size = count
    return count
