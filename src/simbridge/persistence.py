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
Persistence Bridge

A saved index is two files: the engine's topology at ``path`` and, when
data is included, the space's record vector at ``path + ".dat"``. Records
are loaded before topology because the method refers to them by position.
"""

import logging
import os
from typing import Optional

from . import engine
from .allocator import Allocator
from .error_channel import boundary
from .errors import DataIOError, ErrorCode, InvalidArgumentError
from .index import Index, Params
from .types import DataEncoding, DistanceKind

logger = logging.getLogger(__name__)

DATA_SUFFIX = ".dat"


def data_path(path: str) -> str:
    return path + DATA_SUFFIX


def _check_path(path: str) -> str:
    if not path:
        raise InvalidArgumentError("path must be non-empty")
    return os.fspath(path)


@boundary("Index saved successfully", failure=ErrorCode.DATA_IO_FAILED)
def save_index(index: Index, path: str, include_data: bool = True) -> None:
    """
    Save a built index.

    Args:
        index: Built index
        path: Topology path; records go to ``path + ".dat"``
        include_data: Also write the record vector

    Raises:
        IndexNotBuiltError: index is not built
        DataIOError: the engine or the filesystem failed
    """
    path = _check_path(path)
    body = index._built()
    if include_data:
        body.space.write_object_vector(body.records, data_path(path))
    body.method.save_index(path)
    logger.info("saved index to %s (records=%d, data=%s)", path, len(body.records), include_data)


@boundary("Index loaded successfully", failure=ErrorCode.DATA_IO_FAILED)
def load_index(
    path: str,
    encoding: DataEncoding = DataEncoding.DENSE_FLOAT,
    distance_kind: Optional[DistanceKind] = None,
    allocator: Optional[Allocator] = None,
    include_data: bool = True,
    *,
    space: Optional[str] = None,
    method: Optional[str] = None,
    space_params: Params = None,
) -> Index:
    """
    Load an index saved by :func:`save_index`.

    The space and method default to the ones recorded in the topology; when
    given they must match it. Query-time parameters are reset to the engine
    defaults, then the bridge default search breadth is applied.

    Raises:
        DataIOError: missing or corrupt files, or a space/method mismatch
        SpaceIncompatibleError: ``encoding`` does not fit the saved space
    """
    path = _check_path(path)
    descriptor = engine.read_topology_descriptor(path)
    saved_space = descriptor.get("space")
    saved_method = descriptor.get("method")
    if space is not None and space != saved_space:
        raise DataIOError(f"{path} holds space {saved_space!r}, not {space!r}")
    if method is not None and engine.methods.METHODS.get(method) is not engine.methods.METHODS.get(saved_method):
        raise DataIOError(f"{path} holds method {saved_method!r}, not {method!r}")
    if space_params is None:
        space_params = descriptor.get("space_params", [])

    index = Index.create(saved_space, space_params, saved_method, encoding, distance_kind, allocator)
    try:
        body = index.body
        if include_data:
            body.records.extend(body.space.read_object_vector(data_path(path)))
        loaded = engine.create_method(saved_method, body.space, body.records)
        loaded.load_index(path)
        index._mark_loaded(loaded)
    except Exception:
        index.destroy()
        raise
    logger.info("loaded index from %s (records=%d, data=%s)", path, index.data_qty(), include_data)
    return index
