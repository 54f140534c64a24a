# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.interfaces",
#   "purpose": "Contracts for the embedding index and the external collaborators.",
#   "sections": [
#     {
#       "id": "embeddingindex",
#       "name": "EmbeddingIndex",
#       "anchor": "class-embeddingindex",
#       "kind": "class"
#     },
#     {
#       "id": "objectstoreclient",
#       "name": "ObjectStoreClient",
#       "anchor": "class-objectstoreclient",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Formal contracts between the cluster search core and its collaborators.

The cache, the ingress handler, and the search worker only talk to the outside
world through the shapes declared here:

- ``EmbeddingIndex`` is the per-cluster nearest-neighbour structure. The FAISS
  variants in :mod:`VortexRAG.ClusterSearch.index` implement it; tests swap in
  lightweight stand-ins. Implementations are populated exactly once and are
  immutable afterwards, so concurrent searches need no extra coordination from
  callers.
- ``EmbeddingFetcher`` produces the raw ``(N, D)`` float32 matrix for a cold
  cluster. It may block (object-store I/O) and signals failure by raising or by
  returning ``None``.
- ``QueryBatchDecoder`` turns a request payload into a :class:`QueryBatch`.
- ``ResultEmitter`` delivers one ranked result per query and may raise.
- ``ObjectStoreClient`` is the minimal key/value surface the object-store
  fetcher needs.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import Optional, Protocol

import numpy as np

from .types import ClusterSearchResult, QueryBatch, QueryCorrelation, SearchHit

__all__ = (
    "EmbeddingFetcher",
    "EmbeddingIndex",
    "IndexFactory",
    "ObjectStoreClient",
    "QueryBatchDecoder",
    "ResultEmitter",
)


class EmbeddingIndex(Protocol):
    """Protocol describing a single cluster's nearest-neighbour index."""

    @property
    def dim(self) -> int:
        """Return the embedding dimensionality."""

    @property
    def ntotal(self) -> int:
        """Return the number of stored vectors."""

    @property
    def backend(self) -> str:
        """Return the backend identifier (``cpu_flat``, ``gpu_flat``, ``gpu_ivf``)."""

    def populate(self, vectors: np.ndarray) -> None:
        """Load the cluster's vectors. Called exactly once per index.

        Raises:
            DimensionMismatchError: If ``vectors`` do not have ``dim`` columns.
            RuntimeError: If the index was already populated.
        """

    def search(self, queries: np.ndarray, top_k: int) -> Sequence[Sequence[SearchHit]]:
        """Return, per query row, up to ``top_k`` hits by ascending distance.

        Ties are broken by ascending neighbour id. Batching is purely a
        throughput transform: each row equals the result of searching that
        query alone.

        Raises:
            DimensionMismatchError: If query rows do not have ``dim`` columns.
        """


IndexFactory = Callable[[], EmbeddingIndex]

EmbeddingFetcher = Callable[[int], Optional[np.ndarray]]

QueryBatchDecoder = Callable[[bytes], QueryBatch]

ResultEmitter = Callable[[QueryCorrelation, ClusterSearchResult], None]


class ObjectStoreClient(Protocol):
    """Protocol describing the object-store operations used to fetch clusters."""

    def list_keys(self, prefix: str) -> Iterable[str]:
        """Return the keys stored under ``prefix``."""

    def get(self, key: str) -> Optional[bytes]:
        """Return the blob stored at ``key`` (``None`` when missing)."""
