# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.service",
#   "purpose": "Request ingress, configuration apply, and lifecycle hooks",
#   "sections": [
#     {
#       "id": "clustersearchservice",
#       "name": "ClusterSearchService",
#       "anchor": "class-clustersearchservice",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Per-request entry point wiring the cluster cache to the search worker.

``ClusterSearchService`` is what the host invokes:

- ``apply_config`` once, with the handler's configuration block (``emb_dim``,
  ``top_k``, ``faiss_search_type``/``search_backend`` ...). The configuration
  becomes read-only as soon as the first request or ``start`` builds the
  runtime.
- ``handle`` for every inbound object. It lazily starts the worker, parses the
  cluster id from the key, resolves (and, for a cold cluster, synchronously
  loads) the cluster entry, decodes the payload, and appends one
  :class:`QueryItem` per query to the cluster's pending buffer. Every failure
  is logged and converted into an :class:`IngressStatus`; nothing is raised to
  the host.
- ``start`` / ``stop`` as lifecycle hooks; ``stop`` joins the worker and is
  the only operation that raises (:class:`WorkerJoinError`).
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from threading import Lock
from typing import Any, Dict, Mapping, Optional, Union

from .cache import ClusterIndexCache
from .config import ClusterSearchConfig
from .errors import LoadFailureError, MalformedKeyError
from .index import resolve_index_factory
from .interfaces import EmbeddingFetcher, IndexFactory, QueryBatchDecoder, ResultEmitter
from .keys import parse_batch_id, parse_cluster_id
from .lifecycle import WorkerLifecycle
from .observability import Observability
from .types import IngressStatus, QueryBatch, QueryCorrelation, QueryItem, WorkerState
from .worker import SearchWorker

logger = logging.getLogger(__name__)

__all__ = ["ClusterSearchService"]


@dataclass(frozen=True)
class _Runtime:
    config: ClusterSearchConfig
    cache: ClusterIndexCache
    worker: SearchWorker
    lifecycle: WorkerLifecycle


class ClusterSearchService:
    """Host-facing handler for cluster search requests.

    Examples:
        >>> service = ClusterSearchService(
        ...     fetcher=source, decoder=unpack_query_batch, emitter=emitter
        ... )  # doctest: +SKIP
        >>> service.handle(1, "/rag/emb/clusters_search", "client0_qb0_cluster7", payload)  # doctest: +SKIP
        <IngressStatus.ACCEPTED: 'accepted'>
        >>> service.stop()  # doctest: +SKIP
    """

    def __init__(
        self,
        *,
        fetcher: EmbeddingFetcher,
        decoder: QueryBatchDecoder,
        emitter: ResultEmitter,
        config: Optional[ClusterSearchConfig] = None,
        observability: Optional[Observability] = None,
        index_factory: Optional[IndexFactory] = None,
    ) -> None:
        self._fetcher = fetcher
        self._decoder = decoder
        self._emitter = emitter
        self._config = config or ClusterSearchConfig()
        self._observability = observability or Observability()
        self._index_factory = index_factory
        self._lock = Lock()
        self._runtime: Optional[_Runtime] = None

    @property
    def config(self) -> ClusterSearchConfig:
        """Active configuration."""
        return self._config

    @property
    def observability(self) -> Observability:
        """Shared metrics/logging facade."""
        return self._observability

    @property
    def cache(self) -> ClusterIndexCache:
        """Cluster cache (builds the runtime if necessary)."""
        return self._ensure_runtime().cache

    @property
    def worker_state(self) -> WorkerState:
        """Lifecycle state of the search worker."""
        runtime = self._runtime
        return runtime.lifecycle.state if runtime is not None else WorkerState.NOT_STARTED

    def apply_config(self, payload: Union[ClusterSearchConfig, Mapping[str, Any]]) -> bool:
        """Apply the handler configuration block.

        Keys absent from ``payload`` keep their current values. Invalid values
        are logged and leave the previous configuration in place.

        Returns:
            ``True`` when the configuration was applied.
        """
        with self._lock:
            if self._runtime is not None:
                logger.error(
                    "cluster-search-config-frozen",
                    extra={"event": {"reason": "runtime already initialised"}},
                )
                return False
            try:
                if isinstance(payload, ClusterSearchConfig):
                    config = payload
                else:
                    base = asdict(self._config)
                    if "faiss_search_type" in payload:
                        base.pop("search_backend")
                    config = ClusterSearchConfig.from_dict({**base, **dict(payload)})
            except (TypeError, ValueError):
                logger.exception("cluster-search-config-invalid")
                return False
            self._config = config
        logger.info("cluster-search-config-applied", extra={"event": asdict(config)})
        return True

    def start(self) -> None:
        """Lifecycle hook: build the runtime and launch the worker."""
        self._ensure_runtime().lifecycle.ensure_started()

    def stop(self, timeout: Optional[float] = None) -> None:
        """Lifecycle hook: stop the worker and wait for it to exit.

        Raises:
            WorkerJoinError: If the worker does not exit within the timeout.
        """
        runtime = self._runtime
        if runtime is None:
            return
        if timeout is None:
            timeout = runtime.config.worker_join_timeout_seconds
        runtime.lifecycle.shutdown(timeout)

    def __enter__(self) -> "ClusterSearchService":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def handle(
        self,
        sender: Any,
        pathname: str,
        key: str,
        payload: bytes,
        context: Any = None,
    ) -> IngressStatus:
        """Enqueue the queries carried by one inbound object.

        Args:
            sender: Identity of the sending node.
            pathname: Object pool path the object arrived on.
            key: Object key encoding the cluster id.
            payload: Encoded query batch.
            context: Opaque correlation context forwarded with every result.

        Returns:
            :class:`IngressStatus` describing whether the request was enqueued
            or why it was dropped.
        """
        runtime = self._ensure_runtime()
        runtime.lifecycle.ensure_started()
        metrics = self._observability.metrics
        logger.debug(
            "cluster-search-request",
            extra={"event": {"sender": str(sender), "pathname": pathname, "key": key}},
        )
        if runtime.lifecycle.state in (WorkerState.SHUTTING_DOWN, WorkerState.STOPPED):
            return self._drop(IngressStatus.SHUT_DOWN, key)

        try:
            cluster_id = parse_cluster_id(key, runtime.config.cluster_key_delimiter)
        except MalformedKeyError:
            return self._drop(IngressStatus.MALFORMED_KEY, key, exc_info=True)

        try:
            entry = runtime.cache.lookup_or_create(cluster_id)
        except LoadFailureError:
            return self._drop(IngressStatus.LOAD_FAILED, key, cluster_id=cluster_id)

        try:
            batch = self._decode(payload)
        except Exception:
            return self._drop(
                IngressStatus.DECODE_FAILED, key, cluster_id=cluster_id, exc_info=True
            )

        tag = parse_batch_id(key)
        client_id, batch_id = tag if tag is not None else (None, None)
        items = [
            QueryItem(
                vector=batch.vectors[position],
                text=text,
                correlation=QueryCorrelation(
                    sender=sender,
                    pathname=pathname,
                    key=key,
                    cluster_id=cluster_id,
                    query_index=position,
                    client_id=client_id,
                    batch_id=batch_id,
                    context=context,
                ),
            )
            for position, text in enumerate(batch.texts)
        ]
        appended = entry.buffer.append(items)
        metrics.increment("cluster_search_requests", status=IngressStatus.ACCEPTED.value)
        metrics.increment("cluster_search_enqueued", amount=float(appended))
        logger.debug(
            "cluster-search-enqueued",
            extra={"event": {"cluster_id": cluster_id, "key": key, "queries": appended}},
        )
        return IngressStatus.ACCEPTED

    def stats(self) -> Dict[str, object]:
        """Return cache totals, worker state, and a metrics snapshot."""
        runtime = self._runtime
        cache_stats = runtime.cache.stats() if runtime is not None else {}
        return {
            "cache": cache_stats,
            "worker_state": self.worker_state.value,
            "metrics": self._observability.metrics_snapshot(),
        }

    def _decode(self, payload: bytes) -> QueryBatch:
        decoded = self._decoder(bytes(payload))
        if isinstance(decoded, QueryBatch):
            return decoded
        size, vectors, texts = decoded
        batch = QueryBatch(vectors, texts)
        if batch.size != int(size):
            raise ValueError(f"decoder reported {size} queries but produced {batch.size}")
        return batch

    def _drop(
        self,
        status: IngressStatus,
        key: str,
        *,
        cluster_id: Optional[int] = None,
        exc_info: bool = False,
    ) -> IngressStatus:
        self._observability.metrics.increment("cluster_search_requests", status=status.value)
        logger.error(
            "cluster-search-request-dropped",
            extra={"event": {"status": status.value, "key": key, "cluster_id": cluster_id}},
            exc_info=exc_info,
        )
        return status

    def _ensure_runtime(self) -> _Runtime:
        runtime = self._runtime
        if runtime is not None:
            return runtime
        with self._lock:
            if self._runtime is None:
                config = self._config
                factory = self._index_factory or resolve_index_factory(config)
                cache = ClusterIndexCache(
                    fetcher=self._fetcher,
                    index_factory=factory,
                    observability=self._observability,
                )
                worker = SearchWorker(
                    cache,
                    self._emitter,
                    top_k=config.top_k,
                    observability=self._observability,
                )
                self._runtime = _Runtime(
                    config=config,
                    cache=cache,
                    worker=worker,
                    lifecycle=WorkerLifecycle(worker),
                )
            return self._runtime
