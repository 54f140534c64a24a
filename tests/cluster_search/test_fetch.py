"""Object-store embedding fetch and stand-in payload codec tests."""

from __future__ import annotations

import numpy as np
import pytest

from VortexRAG.ClusterSearch.devtools import (
    InMemoryObjectStore,
    pack_query_batch,
    unpack_query_batch,
)
from VortexRAG.ClusterSearch.errors import DecodeFailureError, LoadFailureError
from VortexRAG.ClusterSearch.fetch import ObjectStoreEmbeddingFetcher, decode_embedding_blob

DIM = 6


def test_fetcher_stacks_shards_in_key_order() -> None:
    vectors = np.arange(10 * DIM, dtype=np.float32).reshape(10, DIM)
    store = InMemoryObjectStore()
    store.put_cluster_embeddings(7, vectors, shards=3)
    store.put("/rag/emb/cluster70/emb_0", np.ones(DIM, dtype="<f4").tobytes())

    matrix = ObjectStoreEmbeddingFetcher(store, dim=DIM)(7)

    np.testing.assert_array_equal(matrix, vectors)
    assert matrix.dtype == np.float32


def test_fetcher_honours_prefix_template() -> None:
    store = InMemoryObjectStore()
    template = "/pool/{cluster_id}/vectors"
    store.put_cluster_embeddings(2, np.ones((4, DIM), dtype=np.float32), template=template)

    matrix = ObjectStoreEmbeddingFetcher(store, dim=DIM, prefix_template=template)(2)

    assert matrix.shape == (4, DIM)


def test_fetcher_raises_for_missing_cluster() -> None:
    with pytest.raises(LoadFailureError) as excinfo:
        ObjectStoreEmbeddingFetcher(InMemoryObjectStore(), dim=DIM)(9)

    assert excinfo.value.cluster_id == 9


def test_fetcher_raises_for_corrupt_blob() -> None:
    store = InMemoryObjectStore()
    store.put("/rag/emb/cluster1/emb_0", b"\x00" * (4 * DIM + 3))

    with pytest.raises(LoadFailureError, match="corrupt"):
        ObjectStoreEmbeddingFetcher(store, dim=DIM)(1)


def test_decode_embedding_blob_is_little_endian() -> None:
    blob = np.array([1.0, -2.5], dtype="<f4").tobytes()

    matrix = decode_embedding_blob(blob, 2)

    np.testing.assert_array_equal(matrix, np.array([[1.0, -2.5]], dtype=np.float32))
    assert matrix.flags.writeable


def test_query_batch_codec_preserves_rows_and_texts() -> None:
    vectors = np.random.default_rng(0).standard_normal((3, DIM)).astype(np.float32)

    batch = unpack_query_batch(pack_query_batch(vectors, ["alpha", "beta", "gamma"]))

    np.testing.assert_array_equal(batch.vectors, vectors)
    assert batch.texts == ["alpha", "beta", "gamma"]
    assert batch.size == 3


@pytest.mark.parametrize("payload", [b"", b"garbage", b"PK\x03\x04broken"])
def test_query_batch_codec_rejects_invalid_payloads(payload: bytes) -> None:
    with pytest.raises(DecodeFailureError):
        unpack_query_batch(payload)


def test_pack_query_batch_requires_one_text_per_row() -> None:
    with pytest.raises(ValueError, match="texts"):
        pack_query_batch(np.zeros((2, DIM), dtype=np.float32), ["only one"])
