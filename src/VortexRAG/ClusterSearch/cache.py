"""Self-populating, cluster-aware cache of embedding indexes and pending buffers.

``ClusterIndexCache`` maps cluster ids to :class:`ClusterEntry` objects pairing
an immutable :class:`~VortexRAG.ClusterSearch.interfaces.EmbeddingIndex` with
the cluster's :class:`~VortexRAG.ClusterSearch.buffer.PendingQueryBuffer`:

- Warm lookups are a plain dictionary read of a populated cell; readers never
  block one another.
- A cold cluster gets a dedicated cell inserted under a short map lock. The
  fetch itself runs under the *cell's* lock with a re-check, so concurrent
  first touches of one cluster collapse to a single fetch while other
  clusters stay readable.
- A failed fetch removes the cell, fails every request that was waiting on
  that attempt, and leaves the cluster eligible for a fresh attempt on the
  next request.
- Entries are never evicted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Optional

import numpy as np

from .buffer import PendingQueryBuffer, WorkSignal
from .errors import LoadFailureError
from .interfaces import EmbeddingFetcher, EmbeddingIndex, IndexFactory
from .observability import Observability

logger = logging.getLogger(__name__)

__all__ = ("ClusterEntry", "ClusterIndexCache")


@dataclass(frozen=True)
class ClusterEntry:
    """Populated cache entry for one cluster."""

    cluster_id: int
    index: EmbeddingIndex
    buffer: PendingQueryBuffer


class _ClusterCell:
    """Lazily populated slot guarding a single cluster's load attempt."""

    __slots__ = ("cluster_id", "lock", "entry", "error")

    def __init__(self, cluster_id: int) -> None:
        self.cluster_id = cluster_id
        self.lock = Lock()
        self.entry: Optional[ClusterEntry] = None
        self.error: Optional[LoadFailureError] = None


class ClusterIndexCache:
    """Thread-safe map of cluster id → (index, pending buffer)."""

    def __init__(
        self,
        *,
        fetcher: EmbeddingFetcher,
        index_factory: IndexFactory,
        signal: Optional[WorkSignal] = None,
        observability: Optional[Observability] = None,
    ) -> None:
        self._fetcher = fetcher
        self._index_factory = index_factory
        self._signal = signal or WorkSignal()
        self._observability = observability or Observability()
        self._cells: Dict[int, _ClusterCell] = {}
        self._lock = Lock()

    @property
    def signal(self) -> WorkSignal:
        """Wake signal shared by every buffer in this cache."""
        return self._signal

    def lookup_or_create(self, cluster_id: int) -> ClusterEntry:
        """Return the entry for ``cluster_id``, loading it on first reference.

        Raises:
            LoadFailureError: If the embeddings for a cold cluster cannot be fetched.
        """
        cell = self._cells.get(cluster_id)
        if cell is not None and cell.entry is not None:
            return cell.entry

        with self._lock:
            cell = self._cells.get(cluster_id)
            if cell is None:
                cell = _ClusterCell(cluster_id)
                self._cells[cluster_id] = cell

        with cell.lock:
            if cell.entry is not None:
                return cell.entry
            if cell.error is not None:
                raise cell.error
            try:
                cell.entry = self._populate(cluster_id)
            except LoadFailureError as exc:
                cell.error = exc
                self._discard(cell)
                raise
            return cell.entry

    def get(self, cluster_id: int) -> Optional[ClusterEntry]:
        """Return the populated entry for ``cluster_id`` without loading it."""
        cell = self._cells.get(cluster_id)
        return cell.entry if cell is not None else None

    def entries(self) -> List[ClusterEntry]:
        """Return a snapshot of every populated entry."""
        with self._lock:
            cells = list(self._cells.values())
        return [cell.entry for cell in cells if cell.entry is not None]

    def has_pending(self) -> bool:
        """Return ``True`` when any cluster has queries awaiting search."""
        return any(entry.buffer.has_pending() for entry in self.entries())

    def stats(self) -> Dict[str, float]:
        """Return cluster, vector, and pending-query totals."""
        entries = self.entries()
        return {
            "clusters": float(len(entries)),
            "vectors": float(sum(entry.index.ntotal for entry in entries)),
            "pending_queries": float(sum(len(entry.buffer) for entry in entries)),
        }

    def __contains__(self, cluster_id: object) -> bool:
        cell = self._cells.get(cluster_id)  # type: ignore[arg-type]
        return cell is not None and cell.entry is not None

    def __len__(self) -> int:
        return len(self.entries())

    def _populate(self, cluster_id: int) -> ClusterEntry:
        observability = self._observability
        with observability.trace("cluster_load", cluster=str(cluster_id)):
            try:
                vectors = self._fetcher(cluster_id)
            except LoadFailureError:
                observability.metrics.increment("cluster_load_failures")
                logger.exception(
                    "cluster-search-load-failed",
                    extra={"event": {"cluster_id": cluster_id}},
                )
                raise
            except Exception as exc:
                observability.metrics.increment("cluster_load_failures")
                logger.exception(
                    "cluster-search-load-failed",
                    extra={"event": {"cluster_id": cluster_id}},
                )
                raise LoadFailureError(
                    cluster_id, f"fetch failed for cluster {cluster_id}: {exc}"
                ) from exc
            if vectors is None:
                observability.metrics.increment("cluster_load_failures")
                logger.error(
                    "cluster-search-load-failed",
                    extra={"event": {"cluster_id": cluster_id, "reason": "no embeddings"}},
                )
                raise LoadFailureError(cluster_id)
            try:
                index = self._index_factory()
                index.populate(np.asarray(vectors, dtype=np.float32))
            except Exception as exc:
                observability.metrics.increment("cluster_load_failures")
                logger.exception(
                    "cluster-search-load-failed",
                    extra={"event": {"cluster_id": cluster_id, "reason": str(exc)}},
                )
                raise LoadFailureError(
                    cluster_id, f"index build failed for cluster {cluster_id}: {exc}"
                ) from exc
        observability.metrics.increment("cluster_loads")
        observability.metrics.set_gauge("cluster_cache_size", float(len(self._cells)))
        logger.info(
            "cluster-search-loaded",
            extra={"event": {"cluster_id": cluster_id, "ntotal": index.ntotal}},
        )
        return ClusterEntry(
            cluster_id=cluster_id, index=index, buffer=PendingQueryBuffer(self._signal)
        )

    def _discard(self, cell: _ClusterCell) -> None:
        with self._lock:
            if self._cells.get(cell.cluster_id) is cell:
                del self._cells[cell.cluster_id]
