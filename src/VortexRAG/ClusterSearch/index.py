# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.index",
#   "purpose": "FAISS-backed embedding index variants and backend selection",
#   "sections": [
#     {
#       "id": "faissembeddingindex",
#       "name": "FaissEmbeddingIndex",
#       "anchor": "class-faissembeddingindex",
#       "kind": "class"
#     },
#     {
#       "id": "flatcpuindex",
#       "name": "FlatCpuIndex",
#       "anchor": "class-flatcpuindex",
#       "kind": "class"
#     },
#     {
#       "id": "gpuflatindex",
#       "name": "GpuFlatIndex",
#       "anchor": "class-gpuflatindex",
#       "kind": "class"
#     },
#     {
#       "id": "gpuivfindex",
#       "name": "GpuIvfIndex",
#       "anchor": "class-gpuivfindex",
#       "kind": "class"
#     },
#     {
#       "id": "resolve-index-factory",
#       "name": "resolve_index_factory",
#       "anchor": "function-resolve-index-factory",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Per-cluster embedding indexes built on FAISS.

Every variant stores one cluster's ``(N, D)`` float32 matrix and answers
batched Top-K queries under squared L2 distance. The variants differ only in
the FAISS structure they build:

- ``FlatCpuIndex``: exact scan with ``faiss.IndexFlatL2``.
- ``GpuFlatIndex``: exact scan with ``faiss.GpuIndexFlatL2`` (optionally FP16).
- ``GpuIvfIndex``: approximate ``faiss.GpuIndexIVFFlat`` trained on the
  cluster's own vectors.

The backend is chosen once per process by :func:`resolve_index_factory`;
callers only ever see the :class:`~VortexRAG.ClusterSearch.interfaces.EmbeddingIndex`
contract. Rows are re-ranked by ``(distance, neighbor_id)`` over an
over-fetched candidate window so ties resolve deterministically and batching
never changes a query's result.
"""

from __future__ import annotations

import logging
from functools import partial
from threading import RLock
from typing import ClassVar, List, Optional

import numpy as np

import faiss  # type: ignore

from . import faiss_gpu
from .config import ClusterSearchConfig
from .errors import DimensionMismatchError
from .interfaces import IndexFactory
from .types import SearchHit

# --- Globals ---

logger = logging.getLogger(__name__)

__all__ = (
    "FaissEmbeddingIndex",
    "FlatCpuIndex",
    "GpuFlatIndex",
    "GpuIvfIndex",
    "create_embedding_index",
    "resolve_index_factory",
)


# --- Public Classes ---


class FaissEmbeddingIndex:
    """Shared populate/search plumbing for the FAISS index variants.

    Subclasses implement :meth:`_build_index`, returning a FAISS index that
    already contains ``matrix``.

    Attributes:
        _dim: Dimensionality of stored and query vectors.
        _oversample: Candidate multiplier applied before tie-breaking.
        _index: Populated FAISS index (``None`` until populated or when empty).
    """

    backend: ClassVar[str] = ""

    def __init__(self, dim: int, *, oversample: int = 2) -> None:
        if dim <= 0:
            raise ValueError("dim must be positive")
        self._dim = int(dim)
        self._oversample = max(1, int(oversample))
        self._lock = RLock()
        self._index: Optional["faiss.Index"] = None
        self._ntotal = 0
        self._populated = False

    @property
    def dim(self) -> int:
        """Embedding dimensionality."""
        return self._dim

    @property
    def ntotal(self) -> int:
        """Number of vectors loaded into the index."""
        return self._ntotal

    @property
    def populated(self) -> bool:
        """Return ``True`` once :meth:`populate` has completed."""
        return self._populated

    def populate(self, vectors: np.ndarray) -> None:
        """Load ``vectors`` into a freshly built FAISS index.

        Args:
            vectors: ``(N, D)`` matrix for the cluster; ``N`` may be zero.

        Raises:
            DimensionMismatchError: If ``vectors`` do not have ``dim`` columns.
            RuntimeError: If the index was already populated.
        """
        matrix = self._coerce(vectors)
        with self._lock:
            if self._populated:
                raise RuntimeError(f"{type(self).__name__} is already populated")
            if matrix.shape[0]:
                self._index = self._build_index(matrix)
            self._ntotal = int(matrix.shape[0])
            self._populated = True
        logger.debug(
            "embedding-index-populated",
            extra={"event": {"backend": self.backend, "ntotal": self._ntotal, "dim": self._dim}},
        )

    def search(self, queries: np.ndarray, top_k: int) -> List[List[SearchHit]]:
        """Return ranked hits for every row of ``queries``.

        Args:
            queries: ``(Q, D)`` matrix (a single ``(D,)`` vector is accepted).
            top_k: Number of neighbours per query.

        Returns:
            One list per query with ``min(top_k, ntotal)`` hits sorted by
            ascending distance, ties by ascending neighbour id.

        Raises:
            ValueError: If ``top_k`` is not positive or the batch is empty.
            DimensionMismatchError: If query rows do not have ``dim`` columns.
        """
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        matrix = self._coerce(queries)
        if matrix.shape[0] == 0:
            raise ValueError("search requires at least one query vector")
        if self._index is None or self._ntotal == 0:
            return [[] for _ in range(matrix.shape[0])]
        fetch = min(self._ntotal, int(top_k) * self._oversample)
        with self._lock:
            distances, labels = self._index.search(matrix, fetch)
        return [
            self._rank_row(row_distances, row_labels, int(top_k))
            for row_distances, row_labels in zip(distances, labels)
        ]

    def _build_index(self, matrix: np.ndarray) -> "faiss.Index":  # pragma: no cover - abstract
        raise NotImplementedError

    @staticmethod
    def _rank_row(distances: np.ndarray, labels: np.ndarray, top_k: int) -> List[SearchHit]:
        pairs = [
            (float(distance), int(label))
            for distance, label in zip(distances, labels)
            if int(label) != -1
        ]
        pairs.sort()
        return [SearchHit(neighbor_id=label, distance=distance) for distance, label in pairs[:top_k]]

    def _coerce(self, vectors: np.ndarray) -> np.ndarray:
        array = np.asarray(vectors, dtype=np.float32)
        if array.ndim == 1:
            array = array.reshape(1, -1)
        if array.ndim != 2:
            raise ValueError(f"bad matrix shape {array.shape}, expected (*,{self._dim})")
        if array.shape[1] != self._dim:
            raise DimensionMismatchError(self._dim, int(array.shape[1]))
        return np.ascontiguousarray(array, dtype=np.float32)


class FlatCpuIndex(FaissEmbeddingIndex):
    """Exact L2 scan on the CPU.

    Examples:
        >>> index = FlatCpuIndex(4)
        >>> index.populate(np.eye(4, dtype=np.float32))
        >>> [hit.neighbor_id for hit in index.search(np.eye(4)[1], top_k=2)[0]]
        [1, 0]
    """

    backend = "cpu_flat"

    def _build_index(self, matrix: np.ndarray) -> "faiss.Index":
        index = faiss.IndexFlatL2(self._dim)
        index.add(matrix)
        return index


class GpuFlatIndex(FaissEmbeddingIndex):
    """Exact L2 scan on a GPU via ``GpuIndexFlatL2``."""

    backend = "gpu_flat"

    def __init__(
        self,
        dim: int,
        *,
        oversample: int = 2,
        opts: Optional[faiss_gpu.GPUOpts] = None,
    ) -> None:
        _require_gpu(self.backend)
        super().__init__(dim, oversample=oversample)
        self._opts = opts or faiss_gpu.GPUOpts()

    def _build_index(self, matrix: np.ndarray) -> "faiss.Index":
        index = faiss_gpu.gpu_flat_index(
            self._dim, resources=faiss_gpu.shared_gpu_resources(), opts=self._opts
        )
        index.add(matrix)
        return index


class GpuIvfIndex(FaissEmbeddingIndex):
    """Approximate IVF-Flat search on a GPU.

    The coarse quantizer is trained on the cluster's own vectors, so ``nlist``
    is clamped to the number of vectors and ``nprobe`` to ``nlist``.
    """

    backend = "gpu_ivf"

    def __init__(
        self,
        dim: int,
        *,
        nlist: int,
        nprobe: int,
        oversample: int = 2,
        opts: Optional[faiss_gpu.GPUOpts] = None,
    ) -> None:
        _require_gpu(self.backend)
        super().__init__(dim, oversample=oversample)
        self._nlist = max(1, int(nlist))
        self._nprobe = max(1, int(nprobe))
        self._opts = opts or faiss_gpu.GPUOpts()

    def _build_index(self, matrix: np.ndarray) -> "faiss.Index":
        nlist = min(self._nlist, int(matrix.shape[0]))
        index = faiss_gpu.gpu_ivf_flat_index(
            self._dim,
            nlist=nlist,
            resources=faiss_gpu.shared_gpu_resources(),
            opts=self._opts,
        )
        index.train(matrix)
        index.add(matrix)
        index.nprobe = min(self._nprobe, nlist)
        logger.debug(
            "gpu-ivf-index-trained",
            extra={"event": {"nlist": nlist, "nprobe": int(index.nprobe), "ntotal": int(matrix.shape[0])}},
        )
        return index


# --- Public Functions ---


def resolve_index_factory(config: ClusterSearchConfig) -> IndexFactory:
    """Select the index variant for this process from ``config``.

    Args:
        config: Process configuration naming the search backend.

    Returns:
        Zero-argument callable producing empty indexes of the selected variant.

    Raises:
        RuntimeError: If a GPU backend is requested but FAISS has no usable GPU.
    """

    backend = config.search_backend
    if backend == "cpu_flat":
        return partial(FlatCpuIndex, config.emb_dim, oversample=config.tie_oversample)
    _require_gpu(backend)
    opts = faiss_gpu.GPUOpts(device=config.device, flat_use_fp16=config.flat_use_fp16)
    if backend == "gpu_flat":
        return partial(GpuFlatIndex, config.emb_dim, oversample=config.tie_oversample, opts=opts)
    if backend == "gpu_ivf":
        return partial(
            GpuIvfIndex,
            config.emb_dim,
            nlist=config.nlist,
            nprobe=config.nprobe,
            oversample=config.tie_oversample,
            opts=opts,
        )
    raise ValueError(f"Unsupported search_backend: {backend}")


def create_embedding_index(config: ClusterSearchConfig) -> FaissEmbeddingIndex:
    """Return a single empty index for ``config`` (convenience for tools and tests)."""

    return resolve_index_factory(config)()  # type: ignore[return-value]


# --- Private Helpers ---


def _require_gpu(backend: str) -> None:
    if not faiss_gpu.gpu_available():
        raise RuntimeError(
            f"search_backend={backend!r} requires a GPU-enabled FAISS build with a visible device"
        )
