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
Error Channel

A per-thread slot holding the outcome of the most recent boundary call on
that thread: code, message and source location. Every public operation
overwrites it, on success too, so a stale failure is never reported.

Exceptions remain the primary way failures reach Python callers; the channel
exists for callers that poll status after the fact. It must be read on the
thread that made the call.
"""

import functools
import logging
import threading
import traceback
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, TypeVar

from .allocator import Allocator, ForeignBuffer, default_allocator
from .errors import (
    ErrorCode,
    OutOfMemoryError,
    SimBridgeError,
    error_for_code,
)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


@dataclass(frozen=True)
class ErrorState:
    """Snapshot of the channel, as plain Python values."""
    code: ErrorCode
    message: str
    source_file: str
    source_line: int

    @property
    def ok(self) -> bool:
        return self.code == ErrorCode.SUCCESS


@dataclass
class ErrorDetail:
    """
    Error detail copied out through an allocator.

    ``message`` and ``source_file`` are owned by the caller and released with
    :meth:`free`, independently of the channel.
    """
    code: ErrorCode
    message: ForeignBuffer
    source_file: ForeignBuffer
    source_line: int

    def free(self) -> None:
        for buf in (self.message, self.source_file):
            if not buf.freed:
                buf.free()

    def __enter__(self) -> "ErrorDetail":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.free()


_INITIAL = ErrorState(ErrorCode.SUCCESS, "No error", __file__, 0)
_local = threading.local()


def set_last_error(code: ErrorCode, message: str, source_file: str, source_line: int) -> None:
    """Overwrite this thread's slot."""
    _local.state = ErrorState(ErrorCode(code), message or "No error", source_file, source_line)


def last_error() -> ErrorState:
    """Return this thread's slot without copying through an allocator."""
    return getattr(_local, "state", _INITIAL)


def clear_last_error() -> None:
    _local.state = _INITIAL


def get_last_error_detail(allocator: Optional[Allocator] = None) -> ErrorDetail:
    """
    Copy this thread's most recent outcome out through ``allocator``.

    Raises:
        OutOfMemoryError: if either string cannot be allocated. Nothing is
            leaked: a message already copied is released first.
    """
    allocator = allocator or default_allocator()
    state = last_error()
    message = allocator.dup_string(state.message)
    try:
        source_file = allocator.dup_string(state.source_file)
    except OutOfMemoryError:
        message.free()
        raise
    # Reading the detail is itself a boundary call.
    set_last_error(ErrorCode.SUCCESS, "Error detail retrieved successfully", __file__, 0)
    return ErrorDetail(state.code, message, source_file, state.source_line)


def _raise_site(exc: BaseException) -> Tuple[str, int]:
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "<unknown>", 0
    last = frames[-1]
    return last.filename, last.lineno or 0


def record_failure(exc: SimBridgeError) -> None:
    """Fill in the raise site on ``exc`` and store it in the channel."""
    if exc.source_file is None:
        exc.source_file, exc.source_line = _raise_site(exc)
    set_last_error(exc.code, exc.message, exc.source_file, exc.source_line or 0)


def translate(exc: BaseException, failure: ErrorCode, operation: str) -> SimBridgeError:
    """Map a non-bridge exception to the bridge taxonomy."""
    code = ErrorCode.OUT_OF_MEMORY if isinstance(exc, MemoryError) else failure
    source_file, source_line = _raise_site(exc)
    detail = str(exc) or type(exc).__name__
    return error_for_code(code)(
        f"{operation} failed: {detail}",
        source_file=source_file,
        source_line=source_line,
    )


def boundary(
    success_message: str,
    failure: ErrorCode = ErrorCode.RUNTIME,
) -> Callable[[F], F]:
    """
    Mark a public bridge operation.

    On return the channel holds ``success_message``. Bridge errors are
    recorded and re-raised; any other exception is translated to ``failure``
    (``MemoryError`` to OUT_OF_MEMORY) so that no engine exception reaches
    the caller untranslated.
    """
    def decorator(fn: F) -> F:
        code = fn.__code__
        operation = fn.__name__

        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                result = fn(*args, **kwargs)
            except SimBridgeError as exc:
                record_failure(exc)
                raise
            except Exception as exc:
                translated = translate(exc, failure, operation)
                logger.warning("%s: %s", operation, translated.message)
                record_failure(translated)
                raise translated from exc
            set_last_error(ErrorCode.SUCCESS, success_message, code.co_filename, code.co_firstlineno)
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
