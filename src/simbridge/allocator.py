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
Allocator Bridge

Every byte the bridge hands back to the caller (duplicated strings, copied-out
records, error detail strings) is obtained through a caller-supplied
``alloc(size, ctx)`` / ``free(ptr, ctx)`` callback pair and must be released
through the matching ``free`` with the same ``ctx``.

The callbacks are real C function pointers (``ctypes.CFUNCTYPE``) so the same
allocator can be handed to native code unchanged.

Example:
    >>> alloc = TrackingAllocator()
    >>> buf = alloc.dup_string("hnsw")
    >>> buf.text()
    'hnsw'
    >>> buf.free()
    >>> alloc.outstanding
    0
"""

import ctypes
import ctypes.util
import logging
import os
import threading
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from .errors import InvalidArgumentError, NullPointerError, OutOfMemoryError

logger = logging.getLogger(__name__)


# =============================================================================
# C-compatible callback signatures
# =============================================================================

ALLOC_FUNC = ctypes.CFUNCTYPE(ctypes.c_void_p, ctypes.c_size_t, ctypes.c_void_p)
FREE_FUNC = ctypes.CFUNCTYPE(None, ctypes.c_void_p, ctypes.c_void_p)


class CAllocator(ctypes.Structure):
    """Native layout of the allocator triple."""
    _fields_ = [
        ("alloc", ALLOC_FUNC),
        ("free", FREE_FUNC),
        ("ctx", ctypes.c_void_p),
    ]


class Allocator:
    """
    Host-supplied allocator used for every boundary-crossing allocation.

    Args:
        alloc: ``alloc(size, ctx) -> address`` (0/None signals failure)
        free: ``free(address, ctx)``
        ctx: Opaque context passed back to both callbacks
    """

    def __init__(
        self,
        alloc: Union[Callable[[int, Optional[int]], Optional[int]], Any],
        free: Union[Callable[[Optional[int], Optional[int]], None], Any],
        ctx: Optional[int] = None,
    ):
        if alloc is None or free is None:
            raise InvalidArgumentError("allocator requires both alloc and free callbacks")
        # Keep references to the CFUNCTYPE wrappers; ctypes does not.
        self._alloc_fn = alloc if isinstance(alloc, ALLOC_FUNC) else ALLOC_FUNC(alloc)
        self._free_fn = free if isinstance(free, FREE_FUNC) else FREE_FUNC(free)
        self._c = CAllocator(self._alloc_fn, self._free_fn, ctx)

    @property
    def struct(self) -> CAllocator:
        """The ``ctypes`` structure, for handing to native code."""
        return self._c

    @property
    def ctx(self) -> Optional[int]:
        return self._c.ctx

    def allocate(self, size: int) -> int:
        """Allocate ``size`` bytes and return the address.

        Raises:
            OutOfMemoryError: if the callback returns null. Never retried.
        """
        if size < 0:
            raise InvalidArgumentError(f"allocation size must be >= 0, got {size}")
        ptr = self._c.alloc(size, self._c.ctx)
        if not ptr:
            raise OutOfMemoryError(f"allocator returned null for {size} bytes")
        return ptr

    def release(self, ptr: int) -> None:
        """Return memory obtained from :meth:`allocate`."""
        if not ptr:
            raise NullPointerError("cannot free a null pointer")
        self._c.free(ptr, self._c.ctx)

    def copy_in(self, data: Any, dtype: Optional[np.dtype] = None) -> "ForeignBuffer":
        """Copy a bytes-like object into freshly allocated memory."""
        if isinstance(data, np.ndarray):
            raw = data.tobytes()
        else:
            raw = bytes(memoryview(data).cast("B"))
        ptr = self.allocate(max(len(raw), 1))
        if raw:
            ctypes.memmove(ptr, raw, len(raw))
        return ForeignBuffer(ptr, len(raw), self, dtype=dtype)

    def dup_string(self, text: Union[str, bytes]) -> "ForeignBuffer":
        """Duplicate a string as NUL-terminated bytes."""
        raw = text.encode("utf-8") if isinstance(text, str) else bytes(text)
        ptr = self.allocate(len(raw) + 1)
        ctypes.memmove(ptr, raw + b"\0", len(raw) + 1)
        return ForeignBuffer(ptr, len(raw), self)


class ForeignBuffer:
    """
    Memory owned by an :class:`Allocator` and handed to the caller.

    The caller must call :meth:`free` (or use the buffer as a context
    manager). Views returned by :meth:`as_array` are only valid until then.
    """

    __slots__ = ("_ptr", "_size", "_allocator", "_dtype")

    def __init__(
        self,
        ptr: int,
        size: int,
        allocator: Allocator,
        dtype: Optional[np.dtype] = None,
    ):
        self._ptr: Optional[int] = ptr
        self._size = size
        self._allocator = allocator
        self._dtype = np.dtype(dtype) if dtype is not None else None

    def __enter__(self) -> "ForeignBuffer":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._ptr is not None:
            self.free()

    def _live_ptr(self) -> int:
        if self._ptr is None:
            raise NullPointerError("buffer has already been freed")
        return self._ptr

    @property
    def address(self) -> int:
        return self._live_ptr()

    @property
    def size(self) -> int:
        """Payload size in bytes."""
        return self._size

    @property
    def freed(self) -> bool:
        return self._ptr is None

    def tobytes(self) -> bytes:
        return ctypes.string_at(self._live_ptr(), self._size)

    def text(self, encoding: str = "utf-8") -> str:
        return self.tobytes().decode(encoding)

    def as_array(self, dtype: Optional[np.dtype] = None) -> np.ndarray:
        """Zero-copy numpy view over the allocation."""
        dtype = np.dtype(dtype) if dtype is not None else (self._dtype or np.dtype(np.uint8))
        raw = (ctypes.c_char * self._size).from_address(self._live_ptr())
        return np.frombuffer(raw, dtype=dtype)

    def free(self) -> None:
        """Release the memory through the allocator that produced it."""
        ptr = self._live_ptr()
        self._ptr = None
        self._allocator.release(ptr)

    def __len__(self) -> int:
        return self._size

    def __repr__(self) -> str:
        state = "freed" if self._ptr is None else hex(self._ptr)
        return f"ForeignBuffer({state}, size={self._size})"


# =============================================================================
# Built-in allocators
# =============================================================================

class _BlockPool:
    """Python-managed blocks; an address stays valid while its block is held."""

    def __init__(self):
        self._blocks: Dict[int, ctypes.Array] = {}
        self._lock = threading.Lock()

    def alloc(self, size: int, ctx: Optional[int]) -> int:
        block = ctypes.create_string_buffer(max(size, 1))
        addr = ctypes.addressof(block)
        with self._lock:
            self._blocks[addr] = block
        return addr

    def free(self, ptr: Optional[int], ctx: Optional[int]) -> None:
        with self._lock:
            self._blocks.pop(ptr, None)

    def __len__(self) -> int:
        return len(self._blocks)


class PyAllocator(Allocator):
    """Default allocator backed by ``ctypes`` string buffers."""

    def __init__(self):
        self._pool = _BlockPool()
        super().__init__(self._pool.alloc, self._pool.free)


class TrackingAllocator(Allocator):
    """
    Allocator that counts live allocations.

    Args:
        fail_after: If set, every allocation after this many successful ones
            returns null (simulates exhaustion).
    """

    def __init__(self, fail_after: Optional[int] = None):
        self._pool = _BlockPool()
        self._lock = threading.Lock()
        self._sizes: Dict[int, int] = {}
        self.fail_after = fail_after
        self.total_allocations = 0
        self.peak_bytes = 0
        super().__init__(self._alloc, self._free)

    def _alloc(self, size: int, ctx: Optional[int]) -> Optional[int]:
        with self._lock:
            if self.fail_after is not None and self.total_allocations >= self.fail_after:
                return None
            self.total_allocations += 1
        addr = self._pool.alloc(size, ctx)
        with self._lock:
            self._sizes[addr] = size
            self.peak_bytes = max(self.peak_bytes, sum(self._sizes.values()))
        return addr

    def _free(self, ptr: Optional[int], ctx: Optional[int]) -> None:
        with self._lock:
            self._sizes.pop(ptr, None)
        self._pool.free(ptr, ctx)

    @property
    def outstanding(self) -> int:
        """Number of allocations not yet freed."""
        return len(self._sizes)

    @property
    def outstanding_bytes(self) -> int:
        return sum(self._sizes.values())


class _LibC:
    """Lazy bindings to the platform C runtime's malloc/free."""
    _lib = None

    @classmethod
    def get_lib(cls):
        if cls._lib is None:
            name = ctypes.util.find_library("c")
            if name is None and os.name == "nt":
                name = "msvcrt"
            if name is None:
                raise ImportError("Could not find the C runtime library for libc_allocator()")
            cls._lib = ctypes.CDLL(name)
            logger.debug("bound C runtime %s", name)
            cls._setup_bindings()
        return cls._lib

    @classmethod
    def _setup_bindings(cls):
        lib = cls._lib

        lib.malloc.argtypes = [ctypes.c_size_t]
        lib.malloc.restype = ctypes.c_void_p

        lib.free.argtypes = [ctypes.c_void_p]
        lib.free.restype = None


def libc_allocator() -> Allocator:
    """Allocator routing through the C runtime's ``malloc``/``free``."""
    lib = _LibC.get_lib()

    def _alloc(size: int, ctx: Optional[int]) -> Optional[int]:
        return lib.malloc(max(size, 1))

    def _free(ptr: Optional[int], ctx: Optional[int]) -> None:
        lib.free(ptr)

    return Allocator(_alloc, _free)


_default_allocator: Optional[Allocator] = None
_default_lock = threading.Lock()


def default_allocator() -> Allocator:
    """Process-wide :class:`PyAllocator` used when callers pass none."""
    global _default_allocator
    if _default_allocator is None:
        with _default_lock:
            if _default_allocator is None:
                _default_allocator = PyAllocator()
    return _default_allocator
