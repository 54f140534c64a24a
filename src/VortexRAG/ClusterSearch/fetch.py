"""Embedding fetchers that materialise a cluster's vectors from an object store.

Cluster embeddings are stored as one or more blobs under
``/rag/emb/cluster{id}``; each blob is a packed little-endian float32 matrix
with ``emb_dim`` columns. :class:`ObjectStoreEmbeddingFetcher` lists the blobs
under the cluster prefix and stacks them in key order.
"""

from __future__ import annotations

import logging
from typing import List

import numpy as np

from .errors import LoadFailureError
from .interfaces import ObjectStoreClient
from .keys import cluster_prefix

logger = logging.getLogger(__name__)

__all__ = ["ObjectStoreEmbeddingFetcher", "decode_embedding_blob"]

_FLOAT32_LE = np.dtype("<f4")


def decode_embedding_blob(blob: bytes, dim: int) -> np.ndarray:
    """Decode a packed float32 blob into an ``(N, dim)`` matrix.

    Raises:
        ValueError: If the blob length is not a whole number of rows.

    Examples:
        >>> decode_embedding_blob(np.ones(4, dtype="<f4").tobytes(), 2).shape
        (2, 2)
    """
    row_bytes = _FLOAT32_LE.itemsize * int(dim)
    if len(blob) % row_bytes:
        raise ValueError(f"blob of {len(blob)} bytes is not a multiple of {row_bytes}-byte rows")
    matrix = np.frombuffer(blob, dtype=_FLOAT32_LE).reshape(-1, int(dim))
    return matrix.astype(np.float32, copy=True)


class ObjectStoreEmbeddingFetcher:
    """Fetch a cluster's embeddings by listing and decoding its object-store blobs.

    Examples:
        >>> fetcher = ObjectStoreEmbeddingFetcher(client, dim=64)  # doctest: +SKIP
        >>> fetcher(7).shape  # doctest: +SKIP
        (1000, 64)
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        *,
        dim: int,
        prefix_template: str = "/rag/emb/cluster{cluster_id}",
    ) -> None:
        self._client = client
        self._dim = int(dim)
        self._template = prefix_template

    def __call__(self, cluster_id: int) -> np.ndarray:
        prefix = cluster_prefix(cluster_id, self._template)
        keys = sorted(self._client.list_keys(prefix))
        if not keys:
            raise LoadFailureError(cluster_id, f"no embedding objects under {prefix}")
        blocks: List[np.ndarray] = []
        for key in keys:
            blob = self._client.get(key)
            if blob is None:
                raise LoadFailureError(cluster_id, f"embedding object {key} vanished during fetch")
            try:
                blocks.append(decode_embedding_blob(bytes(blob), self._dim))
            except ValueError as exc:
                raise LoadFailureError(cluster_id, f"corrupt embedding object {key}: {exc}") from exc
        logger.debug(
            "cluster-embeddings-fetched",
            extra={"event": {"cluster_id": cluster_id, "objects": len(keys), "prefix": prefix}},
        )
        return np.vstack(blocks)
