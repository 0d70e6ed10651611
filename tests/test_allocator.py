"""Allocator Bridge: every handed-back byte goes through the caller's callbacks."""

import ctypes

import numpy as np
import pytest

from simbridge import (
    Allocator,
    InvalidArgumentError,
    NullPointerError,
    OutOfMemoryError,
    TrackingAllocator,
    libc_allocator,
)


def test_dup_string_is_nul_terminated(allocator):
    buf = allocator.dup_string("hnsw")
    assert buf.size == 4
    assert ctypes.string_at(buf.address, 5) == b"hnsw\0"
    assert buf.text() == "hnsw"
    buf.free()
    assert allocator.outstanding == 0


def test_double_free_is_an_error(allocator):
    buf = allocator.dup_string("x")
    buf.free()
    with pytest.raises(NullPointerError):
        buf.free()
    with pytest.raises(NullPointerError):
        buf.tobytes()


def test_null_from_alloc_is_out_of_memory_and_not_retried():
    alloc = TrackingAllocator(fail_after=0)
    with pytest.raises(OutOfMemoryError):
        alloc.allocate(16)
    assert alloc.total_allocations == 0
    assert alloc.outstanding == 0


def test_negative_size_rejected(allocator):
    with pytest.raises(InvalidArgumentError):
        allocator.allocate(-1)


def test_release_null_rejected(allocator):
    with pytest.raises(NullPointerError):
        allocator.release(0)


def test_copy_in_exposes_zero_copy_view(allocator):
    data = np.arange(6, dtype=np.float32)
    with allocator.copy_in(data, dtype=np.float32) as buf:
        assert buf.size == data.nbytes
        np.testing.assert_array_equal(buf.as_array(), data)
        assert allocator.outstanding == 1
    assert buf.freed
    assert allocator.outstanding == 0


def test_tracking_counts_bytes(allocator):
    a = allocator.allocate(10)
    b = allocator.allocate(20)
    assert allocator.outstanding == 2
    assert allocator.outstanding_bytes == 30
    allocator.release(a)
    allocator.release(b)
    assert allocator.outstanding == 0
    assert allocator.peak_bytes == 30
    assert allocator.total_allocations == 2


def test_callbacks_receive_ctx():
    seen = []
    blocks = {}

    def alloc(size, ctx):
        seen.append(("alloc", ctx))
        block = ctypes.create_string_buffer(max(size, 1))
        blocks[ctypes.addressof(block)] = block
        return ctypes.addressof(block)

    def free(ptr, ctx):
        seen.append(("free", ctx))
        blocks.pop(ptr)

    custom = Allocator(alloc, free, ctx=42)
    custom.dup_string("abc").free()
    assert seen == [("alloc", 42), ("free", 42)]
    assert not blocks


def test_allocator_requires_both_callbacks():
    with pytest.raises(InvalidArgumentError):
        Allocator(None, lambda ptr, ctx: None)


def test_libc_allocator_round_trip():
    try:
        alloc = libc_allocator()
    except ImportError:
        pytest.skip("C runtime library not found")
    buf = alloc.dup_string("libc")
    assert buf.text() == "libc"
    buf.free()
