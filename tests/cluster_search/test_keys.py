"""Key parsing tests for cluster and batch identifiers."""

from __future__ import annotations

import pytest

from VortexRAG.ClusterSearch.errors import MalformedKeyError
from VortexRAG.ClusterSearch.keys import cluster_prefix, parse_batch_id, parse_cluster_id


@pytest.mark.parametrize(
    ("key", "expected"),
    [
        ("/rag/emb/clusters_search/client3_qb17_cluster42", 42),
        ("client0_qb0_cluster7", 7),
        ("_cluster0", 0),
        ("/rag/emb/clusters_search/client1_qb2_cluster12_extra", 12),
        ("_cluster1_cluster5", 5),
    ],
)
def test_parse_cluster_id(key: str, expected: int) -> None:
    assert parse_cluster_id(key) == expected


@pytest.mark.parametrize(
    "key",
    ["/rag/emb/clusters_search/client0_qb1", "client0_qb1_cluster", "client0_cluster_x"],
)
def test_parse_cluster_id_rejects_malformed_keys(key: str) -> None:
    with pytest.raises(MalformedKeyError):
        parse_cluster_id(key)


def test_parse_cluster_id_honours_custom_delimiter() -> None:
    assert parse_cluster_id("/pool/qb3-shard19", delimiter="-shard") == 19


def test_parse_batch_id() -> None:
    assert parse_batch_id("/rag/emb/clusters_search/client3_qb17_cluster42") == (3, 17)
    assert parse_batch_id("plain_cluster4") is None


def test_cluster_prefix() -> None:
    assert cluster_prefix(7) == "/rag/emb/cluster7"
    assert cluster_prefix(3, "/pool/{cluster_id}/vectors") == "/pool/3/vectors"
