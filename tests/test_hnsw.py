"""HNSW method backed by hnswlib."""

import os

import numpy as np
import pytest

hnswlib = pytest.importorskip("hnswlib")

from simbridge import (  # noqa: E402
    BridgeConfig,
    Index,
    IndexBuildError,
    IndexNotBuiltError,
    InvalidArgumentError,
    QueryExecutionError,
    set_config,
)


@pytest.fixture
def data(rng):
    return rng.random((300, 24), dtype=np.float32)


@pytest.fixture
def hnsw_index(data):
    index = Index.create("l2", method="hnsw")
    index.add_data_point_batch(data)
    index.build({"M": 16, "efConstruction": 100, "randomSeed": 7})
    yield index
    index.destroy()


def test_self_queries(hnsw_index, data):
    for pos in (0, 50, 299):
        ids, dists = hnsw_index.knn_query(data[pos], k=5)
        assert ids[0] == pos
        assert dists[0] == pytest.approx(0.0, abs=1e-3)
        assert np.all(np.diff(dists) >= 0)


def test_distances_are_engine_l2(hnsw_index, data):
    query = data[3] + 0.01
    ids, dists = hnsw_index.knn_query(query, k=5)
    expected = np.linalg.norm(data[ids].astype(np.float64) - query, axis=1)
    np.testing.assert_allclose(dists, expected, rtol=1e-4, atol=1e-5)


@pytest.mark.parametrize("space", ["cosinesimil", "negdotprod"])
def test_other_spaces_agree_with_brute_force(space, data):
    query = data[11]
    with Index.create(space, method="hnsw") as approx, Index.create(space, method="brute_force") as exact:
        for index in (approx, exact):
            index.add_data_point_batch(data)
            index.build()
        approx_ids, approx_dists = approx.knn_query(query, k=5)
        exact_ids, exact_dists = exact.knn_query(query, k=5)
        assert approx_ids[0] == exact_ids[0]
        np.testing.assert_allclose(approx_dists[0], exact_dists[0], rtol=1e-4, atol=1e-4)


def test_default_search_breadth_applied(hnsw_index):
    assert hnsw_index.body.method._ef_search == 200


def test_search_breadth_from_config(data):
    set_config(BridgeConfig(ef_search=64))
    with Index.create("l2", method="hnsw") as index:
        index.add_data_point_batch(data[:20])
        index.build()
        assert index.body.method._ef_search == 64


def test_query_time_params(hnsw_index, data):
    hnsw_index.set_query_time_params({"efSearch": 50})
    assert hnsw_index.body.method._ef_search == 50
    with pytest.raises(InvalidArgumentError):
        hnsw_index.set_query_time_params(["bogus=1"])
    ids, _ = hnsw_index.knn_query(data[8], k=3)
    assert ids[0] == 8


def test_query_time_params_need_build(data):
    with Index.create("l2", method="hnsw") as index:
        with pytest.raises(IndexNotBuiltError):
            index.set_query_time_params({"efSearch": 10})


def test_unsupported_space_fails_build(data):
    with Index.create("l1", method="hnsw") as index:
        index.add_data_point_batch(data[:10])
        with pytest.raises(IndexBuildError):
            index.build()
        assert not index.is_built


def test_unknown_build_param(data):
    with Index.create("l2", method="hnsw") as index:
        index.add_data_point_batch(data[:10])
        with pytest.raises(IndexBuildError):
            index.build({"Mmax": 3})


def test_range_query_unsupported(hnsw_index, data):
    with pytest.raises(QueryExecutionError):
        hnsw_index.range_query(data[0], 0.5)


def test_k_clamped_to_size(data):
    with Index.create("l2", method="hnsw") as index:
        index.add_data_point_batch(data[:4], ids=[10, 11, 12, 13])
        index.build()
        ids, _ = index.knn_query(data[1], k=10)
        assert len(ids) == 4
        assert ids[0] == 11


def test_batch_queries(hnsw_index, data):
    results = hnsw_index.knn_query_batch(data[:16], k=3)
    assert [r.ids[0] for r in results] == list(range(16))


def test_round_trip_with_and_without_data(hnsw_index, data, tmp_path):
    path = str(tmp_path / "graph.idx")
    hnsw_index.save(path)
    assert os.path.exists(path + ".hnsw")
    expected_ids, expected_dists = hnsw_index.knn_query(data[21], k=5)

    with Index.load(path) as loaded:
        assert loaded.data_qty() == len(data)
        assert loaded.body.method._ef_search == 200
        ids, dists = loaded.knn_query(data[21], k=5)
        np.testing.assert_array_equal(ids, expected_ids)
        np.testing.assert_allclose(dists, expected_dists, rtol=1e-6)

    with Index.load(path, include_data=False) as topology_only:
        assert topology_only.data_qty() == 0
        ids, _ = topology_only.knn_query(data[21], k=5)
        np.testing.assert_array_equal(ids, expected_ids)


def test_memory_usage(hnsw_index, data):
    assert hnsw_index.memory_usage() > data.nbytes
