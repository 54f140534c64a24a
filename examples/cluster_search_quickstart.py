"""Quickstart harness for VortexRAG ClusterSearch."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

import numpy as np

from VortexRAG.ClusterSearch import (
    ClusterSearchConfig,
    ClusterSearchConfigManager,
    ClusterSearchService,
    IngressStatus,
    ObjectStoreEmbeddingFetcher,
)
from VortexRAG.ClusterSearch.devtools import (
    InMemoryObjectStore,
    RecordingEmitter,
    SyntheticEmbeddingSource,
    pack_query_batch,
    unpack_query_batch,
)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the quickstart harness."""

    parser = argparse.ArgumentParser(
        description=(
            "Populate an in-memory object store with synthetic cluster embeddings, "
            "submit query batches, and print the Top-K neighbours emitted per query."
        )
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Optional JSON/YAML cluster search config file.",
    )
    parser.add_argument(
        "--clusters",
        type=int,
        default=3,
        help="Number of clusters to populate (default: %(default)s).",
    )
    parser.add_argument(
        "--vectors-per-cluster",
        type=int,
        default=1000,
        help="Embeddings stored per cluster (default: %(default)s).",
    )
    parser.add_argument(
        "--queries",
        type=int,
        default=4,
        help="Queries submitted per cluster (default: %(default)s).",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def _load_config(path: str | None) -> ClusterSearchConfig:
    if path is None:
        return ClusterSearchConfig()
    return ClusterSearchConfigManager(Path(path)).get()


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the quickstart harness."""

    args = _parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    config = _load_config(args.config)

    source = SyntheticEmbeddingSource(
        dim=config.emb_dim, vectors_per_cluster=args.vectors_per_cluster
    )
    store = InMemoryObjectStore()
    for cluster_id in range(args.clusters):
        store.put_cluster_embeddings(
            cluster_id,
            source.vectors_for(cluster_id),
            shards=4,
            template=config.cluster_prefix_template,
        )
    fetcher = ObjectStoreEmbeddingFetcher(
        store, dim=config.emb_dim, prefix_template=config.cluster_prefix_template
    )
    emitter = RecordingEmitter()
    rng = np.random.default_rng(42)
    expected = 0

    with ClusterSearchService(
        fetcher=fetcher, decoder=unpack_query_batch, emitter=emitter, config=config
    ) as service:
        for cluster_id in range(args.clusters):
            vectors = rng.standard_normal((args.queries, config.emb_dim)).astype(np.float32)
            texts = [f"query {cluster_id}.{position}" for position in range(args.queries)]
            key = f"/rag/emb/clusters_search/client0_qb{cluster_id}{config.cluster_key_delimiter}{cluster_id}"
            status = service.handle(0, "/rag/emb/clusters_search", key, pack_query_batch(vectors, texts))
            if status is IngressStatus.ACCEPTED:
                expected += args.queries
            print(f"[cluster-quickstart] {key} -> {status.value}")
        if not emitter.wait_for(expected, timeout=30.0):
            raise SystemExit("Timed out waiting for search results.")
        stats = service.stats()

    for cluster_id, results in sorted(emitter.by_cluster().items()):
        for result in results:
            neighbours = ", ".join(
                f"{hit.neighbor_id}:{hit.distance:.3f}" for hit in result.hits
            )
            print(f"  cluster={cluster_id} '{result.query_text}' -> {neighbours}")
    print(json.dumps(stats["cache"], indent=2))
    return 0


if __name__ == "__main__":  # pragma: no cover - manual harness
    raise SystemExit(main())
