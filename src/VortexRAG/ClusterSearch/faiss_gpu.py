"""
FAISS GPU factories for cluster search.

This module centralises creation of GPU-backed L2 indexes and the shared
``StandardGpuResources`` pool. Callers can request exact (flat) or
approximate (IVF-Flat) layouts while keeping control over device placement
and precision.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Optional

import faiss  # type: ignore

__all__ = (
    "GPUOpts",
    "gpu_available",
    "gpu_flat_index",
    "gpu_ivf_flat_index",
    "shared_gpu_resources",
)

logger = logging.getLogger(__name__)

_REQUIRED_GPU_SYMBOLS = (
    "StandardGpuResources",
    "GpuIndexFlatL2",
    "GpuIndexIVFFlat",
    "get_num_gpus",
)

_resources_lock = Lock()
_resources: Optional["faiss.StandardGpuResources"] = None


@dataclass(frozen=True, slots=True)
class GPUOpts:
    """Runtime options controlling GPU index behaviour.

    Attributes:
        device: GPU device identifier used for FAISS operations.
        flat_use_fp16: Store flat index vectors in float16.

    Examples:
        >>> opts = GPUOpts(device=1)
        >>> opts.device
        1
    """

    device: int = 0
    flat_use_fp16: bool = False


def gpu_available() -> bool:
    """Return ``True`` when the FAISS build exposes GPU indexes and sees a device."""

    if not all(hasattr(faiss, name) for name in _REQUIRED_GPU_SYMBOLS):
        return False
    try:
        return int(faiss.get_num_gpus()) > 0
    except Exception:  # pragma: no cover - driver probing failure
        logger.debug("Unable to query FAISS GPU count", exc_info=True)
        return False


def shared_gpu_resources() -> "faiss.StandardGpuResources":
    """Return the process-wide ``StandardGpuResources`` (created on first use)."""

    global _resources
    with _resources_lock:
        if _resources is None:
            _resources = faiss.StandardGpuResources()
            logger.info("faiss-gpu-resources-created")
        return _resources


def gpu_flat_index(
    dim: int,
    *,
    resources: "faiss.StandardGpuResources",
    opts: Optional[GPUOpts] = None,
) -> "faiss.Index":
    """Return an exact L2 ``GpuIndexFlatL2`` on the configured device.

    Examples:
        >>> index = gpu_flat_index(64, resources=shared_gpu_resources())  # doctest: +SKIP
        >>> index.d  # doctest: +SKIP
        64
    """

    opts = opts or GPUOpts()
    if hasattr(faiss, "GpuIndexFlatConfig"):
        cfg = faiss.GpuIndexFlatConfig()
        cfg.device = int(opts.device)
        if hasattr(cfg, "useFloat16"):
            cfg.useFloat16 = bool(opts.flat_use_fp16)
        return faiss.GpuIndexFlatL2(resources, int(dim), cfg)
    return faiss.GpuIndexFlatL2(resources, int(dim))


def gpu_ivf_flat_index(
    dim: int,
    *,
    nlist: int,
    resources: "faiss.StandardGpuResources",
    opts: Optional[GPUOpts] = None,
) -> "faiss.Index":
    """Return an untrained L2 ``GpuIndexIVFFlat`` with ``nlist`` coarse centroids.

    Raises:
        RuntimeError: When the FAISS build lacks ``GpuIndexIVFFlat``.
    """

    if not hasattr(faiss, "GpuIndexIVFFlat"):
        raise RuntimeError("FAISS build is missing GpuIndexIVFFlat")
    opts = opts or GPUOpts()
    cfg = faiss.GpuIndexIVFFlatConfig()
    cfg.device = int(opts.device)
    return faiss.GpuIndexIVFFlat(resources, int(dim), int(nlist), faiss.METRIC_L2, cfg)
