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
SimBridge error taxonomy.

Every failure that crosses the bridge is one of the classes below. Each
carries a stable numeric ``ErrorCode`` plus the message and source location
of the raise site, so callers can either catch by class or switch on code.
"""

from enum import IntEnum
from typing import Dict, Optional, Type


class ErrorCode(IntEnum):
    """Status codes returned by bridge operations."""
    SUCCESS = 0
    NULL_POINTER = 1
    INVALID_ARGUMENT = 2
    OUT_OF_MEMORY = 3
    BUFFER_TOO_SMALL = 4
    SPACE_INCOMPATIBLE = 5
    INVALID_SPARSE_ELEMENT = 7
    INDEX_BUILD_FAILED = 8
    QUERY_EXECUTION_FAILED = 9
    DATA_IO_FAILED = 10
    RUNTIME = 13
    INDEX_NOT_BUILT = 14


class SimBridgeError(Exception):
    """Base class for all bridge errors."""

    code: ErrorCode = ErrorCode.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        source_file: Optional[str] = None,
        source_line: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.source_file = source_file
        self.source_line = source_line

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.name}, message={self.message!r})"


class NullPointerError(SimBridgeError):
    """Handle is missing or has already been destroyed."""
    code = ErrorCode.NULL_POINTER


class InvalidArgumentError(SimBridgeError, ValueError):
    """Null, zero-sized or malformed input."""
    code = ErrorCode.INVALID_ARGUMENT


class OutOfMemoryError(SimBridgeError, MemoryError):
    """An allocator callback returned null."""
    code = ErrorCode.OUT_OF_MEMORY


class BufferTooSmallError(SimBridgeError):
    """Result would not fit the caller's buffer."""
    code = ErrorCode.BUFFER_TOO_SMALL

    def __init__(self, message: str, *, required: int = 0, capacity: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.required = required
        self.capacity = capacity


class SpaceIncompatibleError(SimBridgeError):
    """Data encoding does not match the configured space or distance kind."""
    code = ErrorCode.SPACE_INCOMPATIBLE


class InvalidSparseElementError(SimBridgeError, ValueError):
    """Sparse input is empty or its element ids are not strictly increasing."""
    code = ErrorCode.INVALID_SPARSE_ELEMENT


class IndexBuildError(SimBridgeError):
    """The method object could not be constructed."""
    code = ErrorCode.INDEX_BUILD_FAILED


class QueryExecutionError(SimBridgeError):
    """The engine failed while running a search."""
    code = ErrorCode.QUERY_EXECUTION_FAILED


class DataIOError(SimBridgeError, OSError):
    """Saving or loading index files failed."""
    code = ErrorCode.DATA_IO_FAILED


class IndexNotBuiltError(SimBridgeError):
    """Operation requires a built index."""
    code = ErrorCode.INDEX_NOT_BUILT


class RuntimeFailure(SimBridgeError, RuntimeError):
    """Catch-all for unexpected engine failures."""
    code = ErrorCode.RUNTIME


_ERROR_TYPES: Dict[ErrorCode, Type[SimBridgeError]] = {
    cls.code: cls
    for cls in (
        NullPointerError,
        InvalidArgumentError,
        OutOfMemoryError,
        BufferTooSmallError,
        SpaceIncompatibleError,
        InvalidSparseElementError,
        IndexBuildError,
        QueryExecutionError,
        DataIOError,
        IndexNotBuiltError,
        RuntimeFailure,
    )
}


def error_for_code(code: ErrorCode) -> Type[SimBridgeError]:
    """Return the exception class for a failure code."""
    if code == ErrorCode.SUCCESS:
        raise ValueError("SUCCESS has no exception type")
    return _ERROR_TYPES[ErrorCode(code)]
