"""In-memory object store implementing :class:`ObjectStoreClient` for tests."""

from __future__ import annotations

from threading import RLock
from typing import Dict, List, Optional

import numpy as np

from ..keys import cluster_prefix

__all__ = ["InMemoryObjectStore"]


class InMemoryObjectStore:
    """Dictionary-backed key/value store with prefix listing.

    Examples:
        >>> store = InMemoryObjectStore()
        >>> store.put_cluster_embeddings(7, np.zeros((4, 2), dtype=np.float32), shards=2)
        >>> store.list_keys("/rag/emb/cluster7")
        ['/rag/emb/cluster7/emb_00000', '/rag/emb/cluster7/emb_00001']
    """

    def __init__(self) -> None:
        self._objects: Dict[str, bytes] = {}
        self._lock = RLock()

    def put(self, key: str, blob: bytes) -> None:
        """Store ``blob`` under ``key``."""
        with self._lock:
            self._objects[key] = bytes(blob)

    def get(self, key: str) -> Optional[bytes]:
        """Return the blob stored at ``key``."""
        with self._lock:
            return self._objects.get(key)

    def list_keys(self, prefix: str) -> List[str]:
        """Return keys below ``prefix`` (``prefix`` itself or ``prefix/...``)."""
        with self._lock:
            return sorted(
                key for key in self._objects if key == prefix or key.startswith(prefix + "/")
            )

    def put_cluster_embeddings(
        self,
        cluster_id: int,
        vectors: np.ndarray,
        *,
        shards: int = 1,
        template: str = "/rag/emb/cluster{cluster_id}",
    ) -> None:
        """Store ``vectors`` as ``shards`` little-endian float32 blobs for ``cluster_id``."""
        prefix = cluster_prefix(cluster_id, template)
        matrix = np.asarray(vectors, dtype="<f4")
        for position, block in enumerate(np.array_split(matrix, max(1, int(shards)))):
            self.put(f"{prefix}/emb_{position:05d}", block.tobytes())
