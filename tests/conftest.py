"""Shared fixtures for the SimBridge test suite."""

import numpy as np
import pytest

from simbridge import (
    DataEncoding,
    Index,
    IndexState,
    TrackingAllocator,
    clear_last_error,
    set_config,
)

_ENV_VARS = ("SIMBRIDGE_EF_SEARCH", "SIMBRIDGE_THREAD_POOL_SIZE", "SIMBRIDGE_STRICT_LAYOUT")


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from environment defaults and a clean error slot."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    set_config(None)
    clear_last_error()
    yield
    set_config(None)


@pytest.fixture
def allocator():
    """Allocator that counts outstanding allocations."""
    return TrackingAllocator()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def vectors(rng):
    return rng.random((200, 16), dtype=np.float32)


@pytest.fixture
def l2_index(vectors, allocator):
    """Built brute-force L2 index over ``vectors``."""
    index = Index.create("l2", method="brute_force", allocator=allocator)
    index.add_data_point_batch(vectors)
    index.build()
    yield index
    if index.state != IndexState.DESTROYED:
        index.destroy()


@pytest.fixture
def sparse_docs():
    return [
        [(1, 1.0), (4, 2.0), (9, 0.5)],
        [(2, 1.0), (3, 1.0)],
        [(1, 0.5), (2, 0.5), (7, 3.0)],
        [(5, 1.0), (6, 1.0), (9, 1.0)],
    ]


@pytest.fixture
def sparse_index(sparse_docs):
    index = Index.create(
        "cosinesimil_sparse",
        method="brute_force",
        encoding=DataEncoding.SPARSE_FLOAT,
    )
    index.add_data_point_batch(sparse_docs)
    index.build()
    yield index
    if index.state != IndexState.DESTROYED:
        index.destroy()


@pytest.fixture
def words():
    return ["kitten", "sitting", "mitten", "kitchen"]


@pytest.fixture
def string_index(words):
    index = Index.create("leven", method="brute_force", encoding=DataEncoding.STRING)
    index.add_data_point_batch_string(words)
    index.build()
    yield index
    if index.state != IndexState.DESTROYED:
        index.destroy()
