"""Object Construction for all four encodings, single and batch."""

import numpy as np
import pytest

from simbridge import (
    BridgeConfig,
    DataEncoding,
    Index,
    InvalidArgumentError,
    InvalidSparseElementError,
    PerformanceWarning,
    SpaceIncompatibleError,
    set_config,
)
from simbridge import engine
from simbridge.construction import create_object, validate_sparse
from simbridge.engine import BorrowedObject, EngineError, OwnedObject
from simbridge.types import SPARSE_ELEM_DTYPE


def _sparse(pairs):
    return np.array(pairs, dtype=SPARSE_ELEM_DTYPE)


# ---------------------------------------------------------------------------
# Sparse validation
# ---------------------------------------------------------------------------

def test_sparse_unsorted_rejected():
    with pytest.raises(InvalidSparseElementError):
        validate_sparse(_sparse([(2, 1.0), (1, 1.0)]))


def test_sparse_sorted_accepted():
    validate_sparse(_sparse([(1, 1.0), (2, 1.0)]))


@pytest.mark.parametrize("pairs", [[], [(3, 1.0), (3, 2.0)]])
def test_sparse_empty_or_duplicate_rejected(pairs):
    with pytest.raises(InvalidSparseElementError):
        validate_sparse(_sparse(pairs))


def test_sparse_index_validates_before_insert():
    with Index.create("cosinesimil_sparse", method="brute_force", encoding=DataEncoding.SPARSE_FLOAT) as index:
        with pytest.raises(InvalidSparseElementError):
            index.add_data_point([(2, 1.0), (1, 1.0)])
        assert index.data_qty() == 0
        index.add_data_point([(1, 1.0), (2, 1.0)])
        assert index.data_qty() == 1


# ---------------------------------------------------------------------------
# Single records
# ---------------------------------------------------------------------------

def test_dense_from_raw_bytes():
    data = np.arange(4, dtype=np.float32)
    with Index.create("l2", method="brute_force") as index:
        pos = index.add_data_point(data.tobytes(), 7, element_count=4)
        assert pos == 0
        np.testing.assert_array_equal(index.get_data_point(pos), data)


def test_short_buffer_rejected():
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(InvalidArgumentError):
            index.add_data_point(b"\x00" * 8, element_count=4)


def test_zero_element_count_rejected():
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(InvalidArgumentError):
            index.add_data_point(b"\x00" * 8, element_count=0)


def test_string_length_is_explicit():
    with Index.create("leven", method="brute_force", encoding=DataEncoding.STRING) as index:
        pos = index.add_data_point(b"hello world", element_count=5)
        assert index.get_data_point(pos) == b"hello"
        assert index.get_data_point_size(pos) == 5


def test_inserted_records_are_owned_copies():
    data = np.ones(4, dtype=np.float32)
    with Index.create("l2", method="brute_force") as index:
        index.add_data_point(data)
        data[:] = 5.0
        np.testing.assert_array_equal(index.get_data_point(0), np.ones(4, dtype=np.float32))


def test_record_id_must_fit_int32():
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(InvalidArgumentError):
            index.add_data_point(np.ones(2, dtype=np.float32), 2 ** 31)


def test_space_capability_is_checked():
    space = engine.create_space("l2")
    with pytest.raises(SpaceIncompatibleError):
        create_object(space, DataEncoding.DENSE_BYTE, b"\x01\x02", 2, 0, 0)


def test_query_records_are_borrowed():
    space = engine.create_space("l2")
    buf = np.arange(3, dtype=np.float32)
    query = create_object(space, DataEncoding.DENSE_FLOAT, buf, 3, 0, -1, borrowed=True)
    assert isinstance(query, BorrowedObject)
    with query:
        np.testing.assert_array_equal(query.data, buf)
    with pytest.raises(EngineError):
        query.data

    owned = create_object(space, DataEncoding.DENSE_FLOAT, buf, 3, 0, 1)
    assert isinstance(owned, OwnedObject)
    assert not owned.data.flags.writeable


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------

def test_batch_default_ids_continue_from_record_count(vectors):
    with Index.create("l2", method="brute_force") as index:
        assert index.add_data_point_batch(vectors[:5]) == 5
        assert index.add_data_point_batch(vectors[5:8]) == 3
        index.build()
        ids, _ = index.knn_query(vectors[6], k=1)
        assert ids[0] == 6


def test_batch_explicit_ids(vectors):
    with Index.create("l2", method="brute_force") as index:
        index.add_data_point_batch(vectors[:3], ids=[100, 200, -300])
        index.build()
        ids, _ = index.knn_query(vectors[2], k=1)
        assert ids[0] == -300


def test_batch_id_count_must_match(vectors):
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(InvalidArgumentError):
            index.add_data_point_batch(vectors[:3], ids=[1, 2])
        assert index.data_qty() == 0


def test_flat_batch_buffer(vectors):
    with Index.create("l2", method="brute_force") as index:
        added = index.add_data_point_batch(vectors[:4].tobytes(), count=4, element_count=16)
        assert added == 4
        np.testing.assert_array_equal(index.get_data_point(3), vectors[3])


def test_batch_failure_keeps_earlier_records():
    with Index.create("cosinesimil_sparse", method="brute_force", encoding=DataEncoding.SPARSE_FLOAT) as index:
        batch = [[(1, 1.0)], [(3, 1.0), (2, 1.0)], [(1, 2.0)]]
        with pytest.raises(InvalidSparseElementError):
            index.add_data_point_batch(batch)
        assert index.data_qty() == 1


def test_concatenated_sparse_batch():
    elements = [(1, 1.0), (2, 2.0), (5, 1.0), (0, 3.0), (9, 1.0), (10, 1.0)]
    with Index.create("negdotprod_sparse", method="brute_force", encoding=DataEncoding.SPARSE_FLOAT) as index:
        index.add_data_point_batch(elements, sparse_counts=[2, 1, 3])
        assert [index.get_data_point_size(i) for i in range(3)] == [2, 1, 3]


def test_pointer_batch(vectors):
    buffers = [row.tobytes() for row in vectors[:3]]
    with Index.create("l2", method="brute_force") as index:
        assert index.add_data_point_batch_pointers(buffers, element_count=16) == 3
        for i in range(3):
            np.testing.assert_array_equal(index.get_data_point(i), vectors[i])


def test_uint8_batch(rng):
    data = rng.integers(0, 256, size=(6, 8), dtype=np.uint8)
    with Index.create("l2sqr_sift", method="brute_force", encoding=DataEncoding.DENSE_BYTE) as index:
        assert index.add_data_point_batch_uint8(data) == 6
        np.testing.assert_array_equal(index.get_data_point(5), data[5])
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(SpaceIncompatibleError):
            index.add_data_point_batch_uint8(data)


def test_string_batch(words):
    with Index.create("leven", method="brute_force", encoding=DataEncoding.STRING) as index:
        assert index.add_data_point_batch_string(words) == len(words)
        assert index.get_data_point(1) == b"sitting"


def test_wrong_dtype_batch_warns(rng):
    data = rng.random((5, 4))
    with Index.create("l2", method="brute_force") as index:
        with pytest.warns(PerformanceWarning):
            index.add_data_point_batch(data)
        assert index.data_qty() == 5


def test_strict_layout_rejects_copies(rng):
    set_config(BridgeConfig(strict_layout=True))
    data = rng.random((5, 4))
    with Index.create("l2", method="brute_force") as index:
        with pytest.raises(InvalidArgumentError):
            index.add_data_point_batch(data)
        with pytest.raises(InvalidArgumentError):
            index.add_data_point_batch(np.asfortranarray(data.astype(np.float32)))
        index.add_data_point_batch(data.astype(np.float32))
        assert index.data_qty() == 5
