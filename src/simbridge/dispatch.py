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
Type Dispatch

An index handle carries an :class:`~simbridge.types.IndexHeader` and one
body. The body type is chosen from ``header.encoding`` alone, through
:data:`BODY_TYPES`; nothing else decides it. Each body owns its space, its
records and, once built, its method.
"""

from typing import Any, Dict, List, Optional, Type, Union

import numpy as np

from .construction import create_object
from .engine import BorrowedObject, Method, Space, SpaceObject
from .errors import InvalidArgumentError, SpaceIncompatibleError
from .types import (
    DENSE_BYTE_DTYPE,
    DENSE_FLOAT_DTYPE,
    QUERY_OBJECT_ID,
    SPARSE_ELEM_DTYPE,
    DataEncoding,
    IndexHeader,
)

Payload = Union[np.ndarray, bytes]


class IndexBody:
    """State behind a handle for one encoding."""

    encoding: DataEncoding
    payload_dtype: np.dtype = DENSE_BYTE_DTYPE

    def __init__(self, space: Space, space_name: str, method_name: str):
        if not space.supports(self.encoding):
            raise SpaceIncompatibleError(
                f"space {space_name} holds {space.encoding.name} records, not {self.encoding.name}"
            )
        self.space = space
        self.space_name = space_name
        self.method_name = method_name
        self.records: List[SpaceObject] = []
        self.method: Optional[Method] = None

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def make_record(self, data: Any, element_count: int, sparse_count: int, object_id: int) -> SpaceObject:
        return create_object(self.space, self.encoding, data, element_count, sparse_count, object_id)

    def make_query(self, data: Any, element_count: int, sparse_count: int) -> BorrowedObject:
        return create_object(
            self.space, self.encoding, data, element_count, sparse_count, QUERY_OBJECT_ID, borrowed=True,
        )

    def record(self, pos: int) -> SpaceObject:
        if isinstance(pos, bool) or not isinstance(pos, (int, np.integer)):
            raise InvalidArgumentError(f"position must be an int, got {type(pos).__name__}")
        if not 0 <= pos < len(self.records):
            raise InvalidArgumentError(f"position {pos} out of range [0, {len(self.records)})")
        return self.records[int(pos)]

    def payload(self, pos: int) -> Payload:
        """Private copy of the stored payload at ``pos``."""
        data = self.record(pos).data
        return np.array(data, dtype=self.payload_dtype, copy=True)

    def element_count(self, pos: int) -> int:
        """Number of payload elements at ``pos`` (floats, pairs, bytes)."""
        return len(self.record(pos).data)

    def clear(self) -> None:
        self.method = None
        self.records = []

    def memory_usage(self) -> int:
        usage = sum(record.nbytes for record in self.records)
        if self.method is not None:
            usage += self.method.memory_usage()
        return usage


class DenseFloatBody(IndexBody):
    encoding = DataEncoding.DENSE_FLOAT
    payload_dtype = DENSE_FLOAT_DTYPE


class SparseFloatBody(IndexBody):
    encoding = DataEncoding.SPARSE_FLOAT
    payload_dtype = SPARSE_ELEM_DTYPE


class DenseByteBody(IndexBody):
    encoding = DataEncoding.DENSE_BYTE
    payload_dtype = DENSE_BYTE_DTYPE


class StringBody(IndexBody):
    encoding = DataEncoding.STRING

    def payload(self, pos: int) -> bytes:
        return bytes(self.record(pos).data)


BODY_TYPES: Dict[DataEncoding, Type[IndexBody]] = {
    DataEncoding.DENSE_FLOAT: DenseFloatBody,
    DataEncoding.SPARSE_FLOAT: SparseFloatBody,
    DataEncoding.DENSE_BYTE: DenseByteBody,
    DataEncoding.STRING: StringBody,
}


def body_type(header: IndexHeader) -> Type[IndexBody]:
    return BODY_TYPES[header.encoding]


def create_body(header: IndexHeader, space: Space, space_name: str, method_name: str) -> IndexBody:
    return body_type(header)(space, space_name, method_name)
