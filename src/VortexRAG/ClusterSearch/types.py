"""Shared data structures for cluster search ingress, buffering, and results.

Queries enter as :class:`QueryBatch` objects produced by the injected decoder,
are split into :class:`QueryItem` entries tagged with their
:class:`QueryCorrelation`, wait in a per-cluster buffer, and leave as
:class:`ClusterSearchResult` records carrying ranked :class:`SearchHit`
neighbours.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Sequence

import numpy as np
from numpy.typing import NDArray

__all__ = (
    "ClusterSearchResult",
    "IngressStatus",
    "QueryBatch",
    "QueryCorrelation",
    "QueryItem",
    "SearchHit",
    "WorkerState",
)


class WorkerState(str, Enum):
    """Lifecycle state of the process-wide search worker."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class IngressStatus(str, Enum):
    """Outcome of handling a single inbound request."""

    ACCEPTED = "accepted"
    MALFORMED_KEY = "malformed_key"
    LOAD_FAILED = "load_failed"
    DECODE_FAILED = "decode_failed"
    SHUT_DOWN = "shut_down"


@dataclass(frozen=True)
class QueryCorrelation:
    """Request metadata attached to every query so results can be routed back.

    Attributes:
        sender: Identity of the node that sent the request.
        pathname: Logical object pool path the request arrived on.
        key: Full request key.
        cluster_id: Cluster the query is searched against.
        query_index: Position of the query inside its request batch.
        client_id: Client id parsed from the key, when present.
        batch_id: Query batch id parsed from the key, when present.
        context: Opaque correlation context supplied by the host.

    Examples:
        >>> QueryCorrelation(sender=1, pathname="/rag/emb", key="k_cluster2",
        ...                  cluster_id=2, query_index=0).cluster_id
        2
    """

    sender: Any
    pathname: str
    key: str
    cluster_id: int
    query_index: int
    client_id: Optional[int] = None
    batch_id: Optional[int] = None
    context: Any = None


@dataclass(slots=True)
class QueryItem:
    """A single query awaiting search in a cluster's pending buffer."""

    vector: NDArray[np.float32]
    text: str
    correlation: QueryCorrelation


@dataclass(slots=True)
class QueryBatch:
    """Decoded request payload: one embedding row and one text per query.

    Examples:
        >>> batch = QueryBatch(np.zeros((2, 4), dtype=np.float32), ["a", "b"])
        >>> batch.size
        2
    """

    vectors: NDArray[np.float32]
    texts: Sequence[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        vectors = np.asarray(self.vectors, dtype=np.float32)
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        if vectors.ndim != 2:
            raise ValueError(f"query vectors must be a 2-D matrix, got shape {vectors.shape}")
        texts = list(self.texts)
        if len(texts) != vectors.shape[0]:
            raise ValueError(
                f"query batch carries {vectors.shape[0]} vectors but {len(texts)} texts"
            )
        self.vectors = vectors
        self.texts = texts

    @property
    def size(self) -> int:
        """Number of queries in the batch."""
        return int(self.vectors.shape[0])


@dataclass(frozen=True, slots=True)
class SearchHit:
    """Nearest-neighbour hit: row id inside the cluster and squared L2 distance.

    Examples:
        >>> SearchHit(neighbor_id=3, distance=0.25)
        SearchHit(neighbor_id=3, distance=0.25)
    """

    neighbor_id: int
    distance: float


@dataclass(slots=True)
class ClusterSearchResult:
    """Ranked neighbours for one query, ready for emission."""

    cluster_id: int
    query_text: str
    hits: List[SearchHit]
    correlation: QueryCorrelation

    def as_dict(self) -> Mapping[str, object]:
        """Return a JSON-friendly view of the result."""
        return {
            "cluster_id": self.cluster_id,
            "query_text": self.query_text,
            "neighbor_ids": [hit.neighbor_id for hit in self.hits],
            "distances": [hit.distance for hit in self.hits],
            "key": self.correlation.key,
            "query_index": self.correlation.query_index,
        }
