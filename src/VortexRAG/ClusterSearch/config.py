# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.config",
#   "purpose": "Cluster search configuration model and manager",
#   "sections": [
#     {
#       "id": "clustersearchconfig",
#       "name": "ClusterSearchConfig",
#       "anchor": "class-clustersearchconfig",
#       "kind": "class"
#     },
#     {
#       "id": "clustersearchconfigmanager",
#       "name": "ClusterSearchConfigManager",
#       "anchor": "class-clustersearchconfigmanager",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Configuration surface area for VortexRAG cluster search.

``ClusterSearchConfig`` is the process-wide, read-only snapshot applied once
when the host hands the handler its configuration block:

- ``emb_dim`` and ``top_k`` size every index and every ranked result.
- ``search_backend`` selects the FAISS variant used for *all* clusters
  (``cpu_flat`` → ``IndexFlatL2``, ``gpu_flat`` → ``GpuIndexFlatL2``,
  ``gpu_ivf`` → ``GpuIndexIVFFlat``). The legacy integer
  ``faiss_search_type`` (0/1/2) is accepted as an alias.
- ``nlist``/``nprobe``/``device``/``flat_use_fp16`` are only read by the GPU
  variants.
- ``cluster_key_delimiter`` and ``cluster_prefix_template`` describe where the
  cluster id lives in request keys and where a cluster's embeddings live in
  the object store.

``ClusterSearchConfigManager`` loads the same payload from JSON *or* YAML and
caches it behind a lock so reloads never race readers.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from threading import RLock
from typing import Any, Literal

# --- Globals ---

__all__ = (
    "SEARCH_BACKENDS",
    "ClusterSearchConfig",
    "ClusterSearchConfigManager",
)

SearchBackend = Literal["cpu_flat", "gpu_flat", "gpu_ivf"]

SEARCH_BACKENDS: tuple[str, ...] = ("cpu_flat", "gpu_flat", "gpu_ivf")

# Integer selector accepted by older handler configuration blocks.
_LEGACY_SEARCH_TYPES: dict[int, str] = {0: "cpu_flat", 1: "gpu_flat", 2: "gpu_ivf"}


# --- Public Classes ---


@dataclass(frozen=True)
class ClusterSearchConfig:
    """Process-wide settings for cluster index caching and search.

    Key fields:
    - ``emb_dim``: Dimensionality of every stored and query vector (64 default).
    - ``top_k``: Neighbours returned per query (4 default).
    - ``search_backend``: FAISS variant used for every cluster.
    - ``tie_oversample``: Candidate multiplier fetched before tie-breaking.
    - ``worker_join_timeout_seconds``: Bound on teardown joins.

    Examples:
        >>> config = ClusterSearchConfig(emb_dim=128, top_k=10)
        >>> config.search_backend
        'cpu_flat'
    """

    emb_dim: int = 64
    top_k: int = 4
    search_backend: SearchBackend = "cpu_flat"
    device: int = 0
    nlist: int = 64
    nprobe: int = 8
    flat_use_fp16: bool = False
    tie_oversample: int = 2
    cluster_key_delimiter: str = "_cluster"
    cluster_prefix_template: str = "/rag/emb/cluster{cluster_id}"
    worker_join_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        for name in ("emb_dim", "top_k", "nlist", "nprobe", "tie_oversample"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(
                    f"ClusterSearchConfig.{name} must be an int, received {type(value).__name__}"
                )
            if value <= 0:
                raise ValueError(f"ClusterSearchConfig.{name} must be positive")
        if self.search_backend not in SEARCH_BACKENDS:
            raise ValueError(
                f"Unsupported search_backend {self.search_backend!r}; "
                f"expected one of {', '.join(SEARCH_BACKENDS)}"
            )
        if not self.cluster_key_delimiter:
            raise ValueError("ClusterSearchConfig.cluster_key_delimiter must not be empty")
        if self.worker_join_timeout_seconds <= 0:
            raise ValueError("ClusterSearchConfig.worker_join_timeout_seconds must be positive")

    @staticmethod
    def from_dict(payload: Mapping[str, Any]) -> ClusterSearchConfig:
        """Construct a config object from a dictionary payload.

        Args:
            payload: Flat mapping of dataclass fields. ``faiss_search_type``
                (0, 1 or 2) is translated to ``search_backend``.

        Returns:
            Fully populated `ClusterSearchConfig` instance.

        Raises:
            ValueError: If the payload is not a mapping, names unknown fields,
                or carries an unknown legacy search type.
        """
        if not isinstance(payload, Mapping):
            raise ValueError(
                "ClusterSearchConfig.from_dict expected a mapping payload, "
                f"received {type(payload).__name__}"
            )
        data = dict(payload)
        legacy = data.pop("faiss_search_type", None)
        if legacy is not None and "search_backend" not in data:
            try:
                data["search_backend"] = _LEGACY_SEARCH_TYPES[int(legacy)]
            except (KeyError, TypeError, ValueError) as exc:
                raise ValueError(f"Unknown faiss_search_type {legacy!r}") from exc
        known = {item.name for item in fields(ClusterSearchConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown cluster search config fields: {', '.join(unknown)}")
        return ClusterSearchConfig(**data)


class ClusterSearchConfigManager:
    """File-backed configuration manager with reload support.

    Examples:
        >>> manager = ClusterSearchConfigManager(Path("cluster_search.yaml"))  # doctest: +SKIP
        >>> manager.get().top_k  # doctest: +SKIP
        4
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = RLock()
        self._config = self._load()

    def get(self) -> ClusterSearchConfig:
        """Return the currently cached cluster search configuration."""
        with self._lock:
            return self._config

    def reload(self) -> ClusterSearchConfig:
        """Reload configuration from disk, replacing the cached instance.

        Raises:
            FileNotFoundError: If the configuration path is missing.
            ValueError: If the config file is invalid JSON or YAML.
        """
        with self._lock:
            self._config = self._load()
            return self._config

    def _load(self) -> ClusterSearchConfig:
        if not self._path.exists():
            raise FileNotFoundError(f"Configuration file {self._path} not found")
        raw = self._path.read_text(encoding="utf-8")
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            payload = self._load_yaml(raw)
        return ClusterSearchConfig.from_dict(payload)

    def _load_yaml(self, raw: str) -> dict[str, Any]:
        """Parse YAML configuration content into a dictionary.

        Raises:
            ValueError: If PyYAML is unavailable or the content does not define a mapping.
        """

        try:
            import yaml  # type: ignore
        except ModuleNotFoundError as exc:  # pragma: no cover - PyYAML is a declared dependency
            raise ValueError("YAML configuration requires PyYAML dependency") from exc

        try:
            data = yaml.safe_load(raw)
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse YAML configuration at {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError("YAML configuration must define a mapping")
        return data
