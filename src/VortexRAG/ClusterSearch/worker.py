# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.worker",
#   "purpose": "Single background consumer that batches, searches, and emits",
#   "sections": [
#     {
#       "id": "searchphase",
#       "name": "SearchPhase",
#       "anchor": "class-searchphase",
#       "kind": "class"
#     },
#     {
#       "id": "searchworker",
#       "name": "SearchWorker",
#       "anchor": "class-searchworker",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Background search worker draining per-cluster buffers into batched searches.

The worker is the single consumer of every :class:`PendingQueryBuffer`. It
sleeps on the cache's :class:`WorkSignal` until either shutdown is requested
or some cluster has pending queries, then walks the populated clusters:

1. ``drain_all`` the cluster's buffer (arrival order preserved),
2. drop queries whose dimensionality disagrees with the index,
3. run one ``EmbeddingIndex.search`` for the whole drained batch,
4. emit one :class:`ClusterSearchResult` per query, tagged with the query's
   correlation metadata.

Emit failures are logged and counted per query and never interrupt the loop.
Shutdown is cooperative: the batch being searched is finished, then ``run``
returns. Queries appended after shutdown was requested may stay undelivered.
"""

from __future__ import annotations

import logging
from enum import Enum
from threading import Event
from typing import List, Optional, Sequence

import numpy as np

from .cache import ClusterEntry, ClusterIndexCache
from .interfaces import ResultEmitter
from .observability import Observability
from .types import ClusterSearchResult, QueryItem, SearchHit

logger = logging.getLogger(__name__)

__all__ = ("SearchPhase", "SearchWorker")


class SearchPhase(str, Enum):
    """Position of the worker inside its wait → search loop."""

    IDLE = "idle"
    WAITING_FOR_WORK = "waiting_for_work"
    SEARCHING = "searching"
    STOPPED = "stopped"


class SearchWorker:
    """Single consumer executing batched nearest-neighbour searches.

    Attributes:
        _cache: Shared (non-owning) reference to the cluster cache.
        _emit: Callable delivering each ranked result downstream.
        _top_k: Neighbours requested per query.
        _shutdown: Cooperative cancellation flag.
    """

    def __init__(
        self,
        cache: ClusterIndexCache,
        emitter: ResultEmitter,
        *,
        top_k: int,
        observability: Optional[Observability] = None,
    ) -> None:
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        self._cache = cache
        self._signal = cache.signal
        self._emit = emitter
        self._top_k = int(top_k)
        self._observability = observability or Observability()
        self._shutdown = Event()
        self._phase = SearchPhase.IDLE

    @property
    def phase(self) -> SearchPhase:
        """Current loop phase."""
        return self._phase

    @property
    def shutdown_requested(self) -> bool:
        """Return ``True`` once :meth:`request_shutdown` has been called."""
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Ask the loop to exit after the in-flight batch and wake it if idle."""
        self._shutdown.set()
        self._signal.notify()

    def run(self) -> None:
        """Loop until shutdown is requested."""
        logger.info("cluster-search-worker-started", extra={"event": {"top_k": self._top_k}})
        try:
            while not self._shutdown.is_set():
                self._phase = SearchPhase.WAITING_FOR_WORK
                self._signal.wait_for(self._has_work)
                if self._shutdown.is_set():
                    break
                self._phase = SearchPhase.SEARCHING
                self.run_once()
        finally:
            self._phase = SearchPhase.STOPPED
            logger.info("cluster-search-worker-stopped")

    def run_once(self) -> int:
        """Drain and search every cluster that currently has pending queries.

        Returns:
            Number of results successfully emitted during this pass.
        """
        emitted = 0
        for entry in self._cache.entries():
            if self._shutdown.is_set():
                break
            if not entry.buffer.has_pending():
                continue
            emitted += self._search_cluster(entry, entry.buffer.drain_all())
        return emitted

    def _has_work(self) -> bool:
        return self._shutdown.is_set() or self._cache.has_pending()

    def _search_cluster(self, entry: ClusterEntry, items: Sequence[QueryItem]) -> int:
        metrics = self._observability.metrics
        valid = self._filter_dimensions(entry, items)
        if not valid:
            return 0
        matrix = np.stack([item.vector for item in valid]).astype(np.float32, copy=False)
        metrics.increment("cluster_search_queries", amount=float(len(valid)))
        metrics.observe("cluster_search_batch_size", float(len(valid)))
        try:
            with self._observability.trace(
                "cluster_search_batch",
                cluster=str(entry.cluster_id),
                batch=str(len(valid)),
            ):
                rows: Sequence[Sequence[SearchHit]] = entry.index.search(matrix, self._top_k)
        except Exception:
            metrics.increment("cluster_search_failures")
            logger.exception(
                "cluster-search-batch-failed",
                extra={"event": {"cluster_id": entry.cluster_id, "batch": len(valid)}},
            )
            return 0

        emitted = 0
        for item, hits in zip(valid, rows):
            result = ClusterSearchResult(
                cluster_id=entry.cluster_id,
                query_text=item.text,
                hits=list(hits),
                correlation=item.correlation,
            )
            try:
                self._emit(item.correlation, result)
            except Exception:
                metrics.increment("cluster_search_emit_failures")
                logger.exception(
                    "cluster-search-emit-failed",
                    extra={
                        "event": {
                            "cluster_id": entry.cluster_id,
                            "key": item.correlation.key,
                            "query_index": item.correlation.query_index,
                        }
                    },
                )
                continue
            emitted += 1
        metrics.increment("cluster_search_emitted", amount=float(emitted))
        return emitted

    def _filter_dimensions(
        self, entry: ClusterEntry, items: Sequence[QueryItem]
    ) -> List[QueryItem]:
        expected = entry.index.dim
        valid: List[QueryItem] = []
        for item in items:
            shape = np.shape(item.vector)
            if shape == (expected,):
                valid.append(item)
                continue
            self._observability.metrics.increment("cluster_search_dimension_mismatch")
            logger.warning(
                "cluster-search-dimension-mismatch",
                extra={
                    "event": {
                        "cluster_id": entry.cluster_id,
                        "expected": expected,
                        "shape": list(shape),
                        "key": item.correlation.key,
                    }
                },
            )
        return valid
