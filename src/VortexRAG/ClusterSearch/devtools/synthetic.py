"""Deterministic embedding sources and result sinks for tests and demos.

``SyntheticEmbeddingSource`` plays the role of the object-store fetch: each
cluster's vectors are drawn from ``numpy.random.default_rng(seed + cluster_id)``
so any run (and any backend) regenerates the same corpus. Failures and latency
can be injected per cluster to exercise load-failure and single-flight paths.
``RecordingEmitter`` captures emitted results behind a condition variable so
tests can block until the worker has delivered what they expect.
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Iterable
from threading import Condition, Lock
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from ..errors import EmitFailureError
from ..types import ClusterSearchResult, QueryCorrelation

__all__ = ("RecordingEmitter", "SyntheticEmbeddingSource")


class SyntheticEmbeddingSource:
    """Deterministic per-cluster embedding fetcher.

    Attributes:
        calls: Number of fetches issued per cluster id.

    Examples:
        >>> source = SyntheticEmbeddingSource(dim=8, vectors_per_cluster=16)
        >>> source(3).shape
        (16, 8)
        >>> source.calls[3]
        1
    """

    def __init__(
        self,
        *,
        dim: int,
        vectors_per_cluster: int = 128,
        seed: int = 0,
        latency_seconds: float = 0.0,
        failing_clusters: Iterable[int] = (),
    ) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self._dim = int(dim)
        self._count = int(vectors_per_cluster)
        self._seed = int(seed)
        self._latency = max(0.0, float(latency_seconds))
        self._lock = Lock()
        self._failing: Set[int] = set(failing_clusters)
        self.calls: Counter[int] = Counter()

    def vectors_for(self, cluster_id: int) -> np.ndarray:
        """Return the deterministic corpus of ``cluster_id`` without counting a fetch."""
        rng = np.random.default_rng(self._seed + int(cluster_id))
        return rng.standard_normal((self._count, self._dim)).astype(np.float32)

    def fail(self, cluster_id: int) -> None:
        """Make subsequent fetches of ``cluster_id`` fail."""
        with self._lock:
            self._failing.add(int(cluster_id))

    def recover(self, cluster_id: int) -> None:
        """Let subsequent fetches of ``cluster_id`` succeed again."""
        with self._lock:
            self._failing.discard(int(cluster_id))

    def __call__(self, cluster_id: int) -> np.ndarray:
        with self._lock:
            self.calls[int(cluster_id)] += 1
            failing = int(cluster_id) in self._failing
        if self._latency:
            time.sleep(self._latency)
        if failing:
            raise ConnectionError(f"synthetic fetch failure for cluster {cluster_id}")
        return self.vectors_for(cluster_id)


class RecordingEmitter:
    """Thread-safe result sink with optional per-query failure injection."""

    def __init__(self, *, fail_query_indexes: Iterable[int] = ()) -> None:
        self._condition = Condition(Lock())
        self._fail_indexes = set(fail_query_indexes)
        self.results: List[Tuple[QueryCorrelation, ClusterSearchResult]] = []
        self.failures = 0

    def __call__(self, correlation: QueryCorrelation, result: ClusterSearchResult) -> None:
        with self._condition:
            if correlation.query_index in self._fail_indexes:
                self.failures += 1
                self._condition.notify_all()
                raise EmitFailureError(
                    f"synthetic emit failure for {correlation.key}#{correlation.query_index}"
                )
            self.results.append((correlation, result))
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least ``count`` results were recorded."""
        with self._condition:
            return self._condition.wait_for(lambda: len(self.results) >= count, timeout=timeout)

    def wait_for_attempts(self, count: int, timeout: float = 5.0) -> bool:
        """Block until ``count`` emissions (successful or failed) were attempted."""
        with self._condition:
            return self._condition.wait_for(
                lambda: len(self.results) + self.failures >= count, timeout=timeout
            )

    def by_cluster(self) -> Dict[int, List[ClusterSearchResult]]:
        """Group recorded results by cluster id."""
        with self._condition:
            grouped: Dict[int, List[ClusterSearchResult]] = {}
            for _, result in self.results:
                grouped.setdefault(result.cluster_id, []).append(result)
            return grouped

    def last(self) -> Optional[ClusterSearchResult]:
        """Return the most recent result (``None`` when nothing was emitted)."""
        with self._condition:
            return self.results[-1][1] if self.results else None
