"""Exactly-once worker start and bounded shutdown tests."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import pytest

from VortexRAG.ClusterSearch.cache import ClusterIndexCache
from VortexRAG.ClusterSearch.devtools import RecordingEmitter, SyntheticEmbeddingSource
from VortexRAG.ClusterSearch.errors import WorkerJoinError
from VortexRAG.ClusterSearch.index import FlatCpuIndex
from VortexRAG.ClusterSearch.lifecycle import WorkerLifecycle
from VortexRAG.ClusterSearch.types import QueryCorrelation, QueryItem, WorkerState
from VortexRAG.ClusterSearch.worker import SearchWorker

DIM = 8


class GatedEmitter(RecordingEmitter):
    """Emitter that blocks inside the first emission until released."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, correlation, result) -> None:
        self.entered.set()
        self.release.wait(timeout=10.0)
        super().__call__(correlation, result)


def _build(emitter):
    source = SyntheticEmbeddingSource(dim=DIM, vectors_per_cluster=16)
    cache = ClusterIndexCache(fetcher=source, index_factory=partial(FlatCpuIndex, DIM))
    worker = SearchWorker(cache, emitter, top_k=2)
    return source, cache, WorkerLifecycle(worker)


def _enqueue(cache: ClusterIndexCache, source, cluster_id: int, count: int) -> None:
    vectors = source.vectors_for(cluster_id)[:count]
    cache.lookup_or_create(cluster_id).buffer.append(
        QueryItem(
            vector=vector,
            text=f"q{position}",
            correlation=QueryCorrelation(
                sender=0,
                pathname="/rag/emb/clusters_search",
                key=f"client0_qb0_cluster{cluster_id}",
                cluster_id=cluster_id,
                query_index=position,
            ),
        )
        for position, vector in enumerate(vectors)
    )


def test_concurrent_ensure_started_launches_one_thread() -> None:
    _, _, lifecycle = _build(RecordingEmitter())
    barrier = threading.Barrier(16)

    def start() -> bool:
        barrier.wait()
        return lifecycle.ensure_started()

    with ThreadPoolExecutor(max_workers=16) as pool:
        launched = list(pool.map(lambda _: start(), range(16)))

    try:
        assert launched.count(True) == 1
        assert lifecycle.started
        assert lifecycle.state is WorkerState.RUNNING
        names = [thread.name for thread in threading.enumerate()]
        assert names.count("cluster-search-worker") == 1
    finally:
        lifecycle.shutdown(timeout=5.0)
    assert lifecycle.state is WorkerState.STOPPED


def test_shutdown_without_start_is_immediate() -> None:
    _, _, lifecycle = _build(RecordingEmitter())

    lifecycle.shutdown(timeout=0.1)

    assert lifecycle.state is WorkerState.STOPPED
    assert lifecycle.ensure_started() is False


def test_shutdown_with_undrained_items_completes() -> None:
    emitter = GatedEmitter()
    source, cache, lifecycle = _build(emitter)
    lifecycle.ensure_started()
    _enqueue(cache, source, 1, 1)
    assert emitter.entered.wait(timeout=5.0)

    stopper = threading.Thread(target=lifecycle.shutdown, kwargs={"timeout": 5.0})
    stopper.start()
    deadline = time.monotonic() + 5.0
    while not lifecycle.worker.shutdown_requested and time.monotonic() < deadline:
        time.sleep(0.01)
    assert lifecycle.worker.shutdown_requested
    _enqueue(cache, source, 2, 5)
    emitter.release.set()
    stopper.join(timeout=10.0)

    assert not stopper.is_alive()
    assert lifecycle.state is WorkerState.STOPPED
    assert all(result.cluster_id == 1 for _, result in emitter.results)
    assert len(cache.get(2).buffer) == 5


def test_join_timeout_raises_worker_join_error() -> None:
    emitter = GatedEmitter()
    source, cache, lifecycle = _build(emitter)
    lifecycle.ensure_started()
    _enqueue(cache, source, 4, 1)
    assert emitter.entered.wait(timeout=5.0)

    with pytest.raises(WorkerJoinError):
        lifecycle.shutdown(timeout=0.1)
    assert lifecycle.state is WorkerState.SHUTTING_DOWN

    emitter.release.set()
    lifecycle.shutdown(timeout=5.0)
    assert lifecycle.state is WorkerState.STOPPED
