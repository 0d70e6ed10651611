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
SimBridge

Boundary layer between Python callers and a similarity-search engine:
typed index handles, caller-controlled allocation, a per-thread error
channel and capacity-checked result extraction.

Example:
    >>> import numpy as np
    >>> from simbridge import Index, DataEncoding
    >>> with Index.create("cosinesimil", method="hnsw") as index:
    ...     index.add_data_point_batch(np.random.rand(1000, 64).astype(np.float32))
    ...     index.build({"M": 16, "efConstruction": 200})
    ...     ids, distances = index.knn_query(np.random.rand(64).astype(np.float32), k=10)
"""

import logging

from .allocator import (
    Allocator,
    ForeignBuffer,
    PyAllocator,
    TrackingAllocator,
    default_allocator,
    libc_allocator,
)
from .config import BridgeConfig, PerformanceWarning, get_config, set_config
from .error_channel import (
    ErrorDetail,
    ErrorState,
    clear_last_error,
    get_last_error_detail,
    last_error,
)
from .errors import (
    BufferTooSmallError,
    DataIOError,
    ErrorCode,
    IndexBuildError,
    IndexNotBuiltError,
    InvalidArgumentError,
    InvalidSparseElementError,
    NullPointerError,
    OutOfMemoryError,
    QueryExecutionError,
    RuntimeFailure,
    SimBridgeError,
    SpaceIncompatibleError,
)
from .index import Index
from .params import ParamSet, ParamType
from .persistence import load_index, save_index
from .results import ResultBuffer
from .types import DataEncoding, DistanceKind, IndexHeader, IndexState

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Index
    "Index",
    "IndexHeader",
    "IndexState",
    "DataEncoding",
    "DistanceKind",
    "ResultBuffer",
    "save_index",
    "load_index",
    # Parameters
    "ParamSet",
    "ParamType",
    # Allocation
    "Allocator",
    "ForeignBuffer",
    "PyAllocator",
    "TrackingAllocator",
    "default_allocator",
    "libc_allocator",
    # Errors
    "ErrorCode",
    "ErrorDetail",
    "ErrorState",
    "get_last_error_detail",
    "last_error",
    "clear_last_error",
    "SimBridgeError",
    "NullPointerError",
    "InvalidArgumentError",
    "OutOfMemoryError",
    "BufferTooSmallError",
    "SpaceIncompatibleError",
    "InvalidSparseElementError",
    "IndexBuildError",
    "QueryExecutionError",
    "DataIOError",
    "IndexNotBuiltError",
    "RuntimeFailure",
    # Configuration
    "BridgeConfig",
    "PerformanceWarning",
    "get_config",
    "set_config",
]
