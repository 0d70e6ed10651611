"""Query Result Extraction: k-NN, range and batch queries."""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from simbridge import (
    BufferTooSmallError,
    DataEncoding,
    Index,
    InvalidArgumentError,
    InvalidSparseElementError,
    QueryExecutionError,
    ResultBuffer,
    last_error,
)


def _l2(vectors, query):
    return np.linalg.norm(vectors.astype(np.float64) - query.astype(np.float64), axis=1)


# ---------------------------------------------------------------------------
# k-NN
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("pos", [0, 17, 199])
def test_self_query_is_rank_zero(l2_index, vectors, pos):
    ids, dists = l2_index.knn_query(vectors[pos], k=5)
    assert len(ids) == 5
    assert ids[0] == pos
    assert dists[0] == pytest.approx(0.0, abs=1e-5)
    assert np.all(np.diff(dists) >= 0)


def test_matches_exhaustive_reference(l2_index, vectors, rng):
    query = rng.random(16, dtype=np.float32)
    ids, dists = l2_index.knn_query(query, k=10)
    reference = _l2(vectors, query)
    expected = np.argsort(reference)[:10]
    np.testing.assert_array_equal(ids, expected)
    np.testing.assert_allclose(dists, reference[expected], rtol=1e-5)


def test_k_larger_than_data(vectors):
    with Index.create("l2", method="brute_force") as index:
        index.add_data_point_batch(vectors[:3])
        index.build()
        assert index.knn_query_get_size(vectors[0], 10) == 3
        ids, _ = index.knn_query(vectors[0], k=10)
        assert sorted(ids.tolist()) == [0, 1, 2]


def test_buffer_too_small_leaves_size_zero(l2_index, vectors):
    result = ResultBuffer(3)
    assert l2_index.knn_query_fill(vectors[0], 3, result) == 3
    assert result.size == 3
    with pytest.raises(BufferTooSmallError) as excinfo:
        l2_index.knn_query_fill(vectors[0], 10, result)
    assert result.size == 0
    assert excinfo.value.required == 10
    assert excinfo.value.capacity == 3


def test_caller_allocated_arrays_are_filled_in_place(l2_index, vectors):
    ids = np.full(4, -7, dtype=np.int32)
    dists = np.full(4, -1.0, dtype=np.float32)
    result = ResultBuffer(ids=ids, distances=dists)
    l2_index.knn_query_fill(vectors[42], 4, result)
    assert ids[0] == 42
    assert np.all(dists >= 0)


def test_result_buffer_validates_arrays():
    with pytest.raises(InvalidArgumentError):
        ResultBuffer(ids=np.zeros(3, dtype=np.int64), distances=np.zeros(3, dtype=np.float32))
    with pytest.raises(InvalidArgumentError):
        ResultBuffer(ids=np.zeros(3, dtype=np.int32), distances=np.zeros(2, dtype=np.float32))
    with pytest.raises(InvalidArgumentError):
        ResultBuffer(-1)


def test_invalid_k(l2_index, vectors):
    for k in (0, -1, 2.5):
        with pytest.raises(InvalidArgumentError):
            l2_index.knn_query(vectors[0], k=k)


def test_dimension_mismatch_is_query_failure(l2_index):
    with pytest.raises(QueryExecutionError):
        l2_index.knn_query(np.zeros(8, dtype=np.float32), k=1)


def test_negative_ids_round_trip(vectors):
    with Index.create("l2", method="brute_force") as index:
        index.add_data_point(vectors[0], -5)
        index.add_data_point(vectors[1], 12)
        index.build()
        ids, _ = index.knn_query(vectors[0], k=2)
        assert ids.tolist() == [-5, 12]


# ---------------------------------------------------------------------------
# Range
# ---------------------------------------------------------------------------

def test_range_query_matches_reference(l2_index, vectors):
    query = vectors[10]
    reference = _l2(vectors, query)
    ordered = np.sort(reference)
    # Midway between neighbours so float32 rounding cannot move the boundary
    radius = float((ordered[15] + ordered[16]) / 2)
    ids, dists = l2_index.range_query(query, radius)
    expected = np.nonzero(reference <= radius)[0]
    assert sorted(ids.tolist()) == sorted(expected.tolist())
    assert ids[0] == 10
    assert np.all(np.diff(dists) >= 0)
    assert l2_index.range_query_get_size(query, radius) == len(ids)


def test_empty_range_result_is_success(l2_index):
    far = np.full(16, 100.0, dtype=np.float32)
    result = ResultBuffer(0)
    assert l2_index.range_query_fill(far, 0.5, result) == 0
    assert result.size == 0
    assert last_error().ok


def test_range_buffer_too_small(l2_index, vectors):
    result = ResultBuffer(1)
    with pytest.raises(BufferTooSmallError):
        l2_index.range_query_fill(vectors[0], 10.0, result)
    assert result.size == 0


def test_negative_radius(l2_index, vectors):
    with pytest.raises(InvalidArgumentError):
        l2_index.range_query(vectors[0], -1.0)


# ---------------------------------------------------------------------------
# Distances
# ---------------------------------------------------------------------------

def test_self_distance_is_zero(l2_index, vectors):
    for i in range(len(vectors)):
        assert l2_index.get_distance(i, i) == pytest.approx(0.0, abs=1e-6)


def test_pairwise_distance(l2_index, vectors):
    expected = float(np.linalg.norm(vectors[0].astype(np.float64) - vectors[1]))
    assert l2_index.get_distance(0, 1) == pytest.approx(expected, rel=1e-5)
    with pytest.raises(InvalidArgumentError):
        l2_index.get_distance(0, len(vectors))


# ---------------------------------------------------------------------------
# Other spaces
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("space", ["l1", "linf", "cosinesimil", "angulardist"])
def test_dense_spaces_rank_self_first(space, vectors):
    with Index.create(space, method="brute_force") as index:
        index.add_data_point_batch(vectors[:50])
        index.build()
        ids, dists = index.knn_query(vectors[7], k=3)
        assert ids[0] == 7
        assert dists[0] == pytest.approx(0.0, abs=1e-3)


def test_negdotprod_prefers_largest_dot(vectors):
    with Index.create("negdotprod", method="brute_force") as index:
        index.add_data_point_batch(vectors[:50])
        index.build()
        query = vectors[0]
        ids, dists = index.knn_query(query, k=1)
        dots = vectors[:50].astype(np.float64) @ query
        assert ids[0] == int(np.argmax(dots))
        assert dists[0] == pytest.approx(-dots.max(), rel=1e-5)


def test_sparse_query(sparse_index, sparse_docs):
    ids, dists = sparse_index.knn_query(sparse_docs[2], k=2)
    assert ids[0] == 2
    assert dists[0] == pytest.approx(0.0, abs=1e-6)


def test_sparse_query_is_validated(sparse_index):
    with pytest.raises(InvalidSparseElementError):
        sparse_index.knn_query([(4, 1.0), (1, 1.0)], k=1)


def test_levenshtein_query(string_index):
    ids, dists = string_index.knn_query("kitten", k=4)
    assert ids.tolist() == [0, 2, 3, 1]
    assert dists.tolist() == [0.0, 1.0, 2.0, 3.0]


def test_sift_query(rng):
    data = rng.integers(0, 256, size=(20, 8), dtype=np.uint8)
    with Index.create("l2sqr_sift", method="brute_force", encoding=DataEncoding.DENSE_BYTE) as index:
        index.add_data_point_batch_uint8(data)
        index.build()
        ids, dists = index.knn_query(data[4], k=2)
        assert ids[0] == 4
        assert dists[0] == 0.0
        diff = data[ids[1]].astype(np.int64) - data[4]
        assert dists[1] == float((diff * diff).sum())


# ---------------------------------------------------------------------------
# Batch and concurrency
# ---------------------------------------------------------------------------

def test_knn_batch_matches_single_queries(l2_index, vectors):
    l2_index.set_thread_pool_size(4)
    results = l2_index.knn_query_batch(vectors[:20], k=4)
    assert len(results) == 20
    for i, result in enumerate(results):
        ids, dists = result.results()
        single_ids, single_dists = l2_index.knn_query(vectors[i], k=4)
        assert ids[0] == i
        np.testing.assert_array_equal(ids, single_ids)
        np.testing.assert_array_equal(dists, single_dists)


def test_knn_batch_reports_first_failure(l2_index, vectors):
    buffers = [ResultBuffer(4), ResultBuffer(1)]
    with pytest.raises(BufferTooSmallError):
        l2_index.knn_query_batch(vectors[:2], k=4, results=buffers)
    assert buffers[0].size == 4
    assert buffers[1].size == 0


def test_knn_batch_string_queries(string_index):
    results = string_index.knn_query_batch(["mitten", "sitting"], k=1)
    assert [r.ids[0] for r in results] == [2, 1]


def test_concurrent_queries_are_independent(l2_index, vectors):
    expected = {i: l2_index.knn_query(vectors[i], k=5) for i in range(0, 200, 5)}

    def worker(i):
        ids, dists = l2_index.knn_query(vectors[i], k=5)
        return i, ids, dists, last_error().ok

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(worker, expected))

    for i, ids, dists, ok in outcomes:
        np.testing.assert_array_equal(ids, expected[i][0])
        np.testing.assert_array_equal(dists, expected[i][1])
        assert ok
