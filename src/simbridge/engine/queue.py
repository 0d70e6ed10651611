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

"""Search result queue: a max-heap on distance that pops the farthest first."""

import heapq
import itertools
from typing import List, Optional, Tuple, Union

Distance = Union[float, int]


class ResultQueue:
    """
    Search results ordered worst-first.

    With a ``capacity`` the queue keeps only the ``capacity`` nearest entries
    (k-NN); without one it keeps everything (range search). Among equal
    distances the earliest pushed entry is popped last.
    """

    def __init__(self, capacity: Optional[int] = None):
        if capacity is not None and capacity < 0:
            raise ValueError(f"capacity must be >= 0, got {capacity}")
        self._capacity = capacity
        self._heap: List[Tuple[Distance, int, int]] = []
        self._seq = itertools.count()

    @property
    def capacity(self) -> Optional[int]:
        return self._capacity

    def push(self, distance: Distance, object_id: int) -> bool:
        """Offer a result; returns False if it did not make the cut."""
        if hasattr(distance, "item"):
            distance = distance.item()
        entry = (-distance, -next(self._seq), int(object_id))
        if self._capacity is not None and len(self._heap) >= self._capacity:
            if self._capacity == 0 or distance >= -self._heap[0][0]:
                return False
            heapq.heapreplace(self._heap, entry)
            return True
        heapq.heappush(self._heap, entry)
        return True

    def top_distance(self) -> Distance:
        return -self._heap[0][0]

    def top_id(self) -> int:
        return self._heap[0][2]

    def pop(self) -> Tuple[Distance, int]:
        """Remove and return ``(distance, id)`` of the farthest entry."""
        neg_distance, _, object_id = heapq.heappop(self._heap)
        return -neg_distance, object_id

    def empty(self) -> bool:
        return not self._heap

    def clone(self) -> "ResultQueue":
        copy = ResultQueue(self._capacity)
        copy._heap = list(self._heap)
        copy._seq = itertools.count(-min((e[1] for e in self._heap), default=0) + 1)
        return copy

    def __len__(self) -> int:
        return len(self._heap)

    def __bool__(self) -> bool:
        return bool(self._heap)
