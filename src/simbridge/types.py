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

"""Core data-model types shared by the bridge and the engine."""

from dataclasses import dataclass
from enum import Enum, IntEnum

import numpy as np


class DataEncoding(IntEnum):
    """Shape of the records an index holds."""
    DENSE_FLOAT = 0
    SPARSE_FLOAT = 1
    DENSE_BYTE = 2
    STRING = 3


class DistanceKind(IntEnum):
    """Whether the engine computes floating-point or integer distances."""
    FLOAT = 0
    INT = 1


class IndexState(str, Enum):
    CREATED = "created"
    BUILT = "built"
    DESTROYED = "destroyed"


# Fixed pairing of encoding to distance kind.
CONVENTIONAL_DISTANCE_KIND = {
    DataEncoding.DENSE_FLOAT: DistanceKind.FLOAT,
    DataEncoding.SPARSE_FLOAT: DistanceKind.FLOAT,
    DataEncoding.DENSE_BYTE: DistanceKind.INT,
    DataEncoding.STRING: DistanceKind.INT,
}

# (id: uint32, value: float32) pairs, little-endian, 8 bytes each.
SPARSE_ELEM_DTYPE = np.dtype([("id", "<u4"), ("value", "<f4")])
DENSE_FLOAT_DTYPE = np.dtype("<f4")
DENSE_BYTE_DTYPE = np.dtype(np.uint8)

QUERY_OBJECT_ID = -1
INT32_MIN = -(2 ** 31)
INT32_MAX = 2 ** 31 - 1


@dataclass(frozen=True)
class IndexHeader:
    """
    Type tag of an index: which encoding and distance kind back it.

    Set once at creation; dispatch reads nothing else to pick the body type.
    """
    encoding: DataEncoding
    distance_kind: DistanceKind

    def __post_init__(self):
        object.__setattr__(self, "encoding", DataEncoding(self.encoding))
        object.__setattr__(self, "distance_kind", DistanceKind(self.distance_kind))
