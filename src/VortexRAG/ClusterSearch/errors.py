"""Failure taxonomy for cluster search ingress, loading, search, and teardown."""

from __future__ import annotations

from typing import Optional

__all__ = (
    "ClusterSearchError",
    "DecodeFailureError",
    "DimensionMismatchError",
    "EmitFailureError",
    "LoadFailureError",
    "MalformedKeyError",
    "WorkerJoinError",
)


class ClusterSearchError(RuntimeError):
    """Base exception for cluster search failures.

    Examples:
        >>> raise ClusterSearchError("cluster search unavailable")
        Traceback (most recent call last):
        ...
        ClusterSearchError: cluster search unavailable
    """


class MalformedKeyError(ClusterSearchError):
    """Raised when a request key does not encode a cluster id.

    Examples:
        >>> raise MalformedKeyError("no cluster id in '/rag/emb/qb1'")
        Traceback (most recent call last):
        ...
        MalformedKeyError: no cluster id in '/rag/emb/qb1'
    """


class LoadFailureError(ClusterSearchError):
    """Raised when the embeddings of a cold cluster cannot be fetched."""

    def __init__(self, cluster_id: int, message: Optional[str] = None) -> None:
        self.cluster_id = cluster_id
        super().__init__(message or f"failed to load embeddings for cluster {cluster_id}")


class DecodeFailureError(ClusterSearchError):
    """Raised when a request payload cannot be decoded into a query batch."""


class EmitFailureError(ClusterSearchError):
    """Raised by result emitters that cannot deliver a ranked result."""


class DimensionMismatchError(ClusterSearchError, ValueError):
    """Raised when vector dimensionality disagrees with the configured ``emb_dim``."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"vector dimension mismatch: expected {expected}, got {actual}")


class WorkerJoinError(ClusterSearchError):
    """Raised from teardown when the search worker thread fails to exit in time."""
