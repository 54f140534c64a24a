# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch",
#   "purpose": "Cluster search public API facade",
#   "sections": []
# }
# === /NAVMAP ===

"""
VortexRAG.ClusterSearch serves the "search within clusters" stage of the
VortexRAG retrieval pipeline. Requests name a cluster through their object key
and carry query embeddings plus query text; the package keeps one FAISS index
per cluster in memory, batches queries per cluster, and emits the Top-K nearest
embeddings of every query.

Core modules and how they interrelate:

- ``config`` defines :class:`ClusterSearchConfig` (``emb_dim``, ``top_k``,
  backend selection) and a JSON/YAML-backed manager.
- ``index`` implements the ``EmbeddingIndex`` contract from ``interfaces`` on
  top of FAISS (CPU flat, GPU flat, GPU IVF-Flat) and selects one variant per
  process; ``faiss_gpu`` holds the GPU factories and shared resources.
- ``cache`` owns the cluster id → (index, pending buffer) map with
  single-flight population of cold clusters; ``buffer`` provides the
  per-cluster FIFO and the wake signal.
- ``worker`` is the single background consumer that drains buffers, runs
  batched searches, and emits results; ``lifecycle`` starts it exactly once and
  joins it on teardown.
- ``service`` is the host-facing handler tying everything together.
- ``devtools`` contains deterministic embedding sources, an in-memory object
  store and a stand-in payload codec for tests and demos.
"""

from __future__ import annotations

# --- Globals ---

__all__ = (
    "ClusterEntry",
    "ClusterIndexCache",
    "ClusterSearchConfig",
    "ClusterSearchConfigManager",
    "ClusterSearchResult",
    "ClusterSearchService",
    "FlatCpuIndex",
    "GpuFlatIndex",
    "GpuIvfIndex",
    "IngressStatus",
    "Observability",
    "ObjectStoreEmbeddingFetcher",
    "PendingQueryBuffer",
    "QueryBatch",
    "QueryCorrelation",
    "QueryItem",
    "SearchHit",
    "SearchWorker",
    "WorkerLifecycle",
    "WorkerState",
    "parse_cluster_id",
    "resolve_index_factory",
)


# --- Re-exports ---

from .buffer import PendingQueryBuffer
from .cache import ClusterEntry, ClusterIndexCache
from .config import ClusterSearchConfig, ClusterSearchConfigManager
from .fetch import ObjectStoreEmbeddingFetcher
from .index import FlatCpuIndex, GpuFlatIndex, GpuIvfIndex, resolve_index_factory
from .keys import parse_cluster_id
from .lifecycle import WorkerLifecycle
from .observability import Observability
from .service import ClusterSearchService
from .types import (
    ClusterSearchResult,
    IngressStatus,
    QueryBatch,
    QueryCorrelation,
    QueryItem,
    SearchHit,
    WorkerState,
)
from .worker import SearchWorker
