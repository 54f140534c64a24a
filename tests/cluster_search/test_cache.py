"""Single-flight population and failure handling for ``ClusterIndexCache``."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import numpy as np
import pytest

from VortexRAG.ClusterSearch.cache import ClusterIndexCache
from VortexRAG.ClusterSearch.devtools import SyntheticEmbeddingSource
from VortexRAG.ClusterSearch.errors import LoadFailureError
from VortexRAG.ClusterSearch.index import FlatCpuIndex
from VortexRAG.ClusterSearch.observability import Observability

DIM = 8


def _cache(fetcher, observability=None) -> ClusterIndexCache:
    return ClusterIndexCache(
        fetcher=fetcher,
        index_factory=partial(FlatCpuIndex, DIM),
        observability=observability,
    )


def _concurrent_lookups(cache: ClusterIndexCache, cluster_id: int, workers: int):
    barrier = threading.Barrier(workers)

    def lookup():
        barrier.wait()
        try:
            return cache.lookup_or_create(cluster_id)
        except LoadFailureError as exc:
            return exc

    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(lambda _: lookup(), range(workers)))


def test_concurrent_first_touch_fetches_once() -> None:
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=32, latency_seconds=0.2)
    cache = _cache(source)

    entries = _concurrent_lookups(cache, 5, workers=16)

    assert source.calls[5] == 1
    assert all(entry is entries[0] for entry in entries)
    assert entries[0].index.ntotal == 32
    assert 5 in cache


def test_warm_lookup_returns_same_entry_without_fetching() -> None:
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=4)
    cache = _cache(source)

    first = cache.lookup_or_create(1)
    second = cache.lookup_or_create(1)

    assert first is second
    assert source.calls[1] == 1
    assert cache.get(1) is first
    assert cache.get(2) is None


def test_failed_load_is_not_cached_and_retry_refetches() -> None:
    observability = Observability()
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=4, failing_clusters=(3,))
    cache = _cache(source, observability)

    with pytest.raises(LoadFailureError) as excinfo:
        cache.lookup_or_create(3)

    assert excinfo.value.cluster_id == 3
    assert 3 not in cache
    assert len(cache) == 0
    assert observability.metrics.counter_value("cluster_load_failures") == 1.0

    source.recover(3)
    entry = cache.lookup_or_create(3)

    assert entry.index.ntotal == 4
    assert source.calls[3] == 2


def test_waiters_on_failed_load_share_the_failure() -> None:
    source = SyntheticEmbeddingSource(
        dim=DIM, vectors_per_cluster=4, latency_seconds=0.3, failing_clusters=(3,)
    )
    cache = _cache(source)

    outcomes = _concurrent_lookups(cache, 3, workers=8)

    assert all(isinstance(outcome, LoadFailureError) for outcome in outcomes)
    assert source.calls[3] == 1
    assert 3 not in cache


def test_slow_load_does_not_block_other_clusters() -> None:
    gate = threading.Event()
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=4)

    def fetcher(cluster_id: int) -> np.ndarray:
        if cluster_id == 9:
            gate.wait(timeout=5.0)
        return source(cluster_id)

    cache = _cache(fetcher)
    cache.lookup_or_create(1)
    loader = threading.Thread(target=cache.lookup_or_create, args=(9,))
    loader.start()
    try:
        assert cache.lookup_or_create(1).cluster_id == 1
        assert cache.lookup_or_create(2).cluster_id == 2
        assert 9 not in cache
    finally:
        gate.set()
        loader.join(timeout=5.0)
    assert 9 in cache


def test_missing_embeddings_raise_load_failure() -> None:
    cache = _cache(lambda cluster_id: None)

    with pytest.raises(LoadFailureError):
        cache.lookup_or_create(4)
    assert 4 not in cache


def test_wrong_width_embeddings_raise_load_failure() -> None:
    cache = _cache(lambda cluster_id: np.zeros((3, DIM + 1), dtype=np.float32))

    with pytest.raises(LoadFailureError, match="dimension mismatch"):
        cache.lookup_or_create(6)


def test_stats_report_clusters_vectors_and_pending() -> None:
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=10)
    cache = _cache(source)
    cache.lookup_or_create(0)
    cache.lookup_or_create(1)

    stats = cache.stats()

    assert stats == {"clusters": 2.0, "vectors": 20.0, "pending_queries": 0.0}
    assert not cache.has_pending()


class _TrainingFailureIndex(FlatCpuIndex):
    def _build_index(self, matrix: np.ndarray):
        raise RuntimeError("IVF training failed")


@pytest.mark.parametrize(
    "factory",
    [partial(_TrainingFailureIndex, DIM), partial(FlatCpuIndex, DIM, oversample="many")],
)
def test_index_construction_errors_raise_load_failure(factory) -> None:
    observability = Observability()
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=4)
    cache = ClusterIndexCache(fetcher=source, index_factory=factory, observability=observability)

    with pytest.raises(LoadFailureError, match="index build failed"):
        cache.lookup_or_create(8)

    assert 8 not in cache
    assert observability.metrics.counter_value("cluster_load_failures") == 1.0
