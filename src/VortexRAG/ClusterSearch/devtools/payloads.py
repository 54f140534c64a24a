"""Stand-in query batch codec built on numpy's ``.npz`` container.

The production payload layout belongs to the transport layer. Tests, demos and
the in-memory harness need *some* encoding, so these helpers store the query
matrix and texts as two arrays in an uncompressed ``.npz`` archive.
"""

from __future__ import annotations

import io
import zipfile
from collections.abc import Sequence

import numpy as np

from ..errors import DecodeFailureError
from ..types import QueryBatch

__all__ = ["pack_query_batch", "unpack_query_batch"]


def pack_query_batch(vectors: np.ndarray, texts: Sequence[str]) -> bytes:
    """Encode ``vectors`` (``Q x D``) and their ``texts`` into payload bytes.

    Examples:
        >>> payload = pack_query_batch(np.zeros((1, 4), dtype=np.float32), ["hello"])
        >>> unpack_query_batch(payload).texts
        ['hello']
    """
    batch = QueryBatch(np.asarray(vectors, dtype=np.float32), list(texts))
    buffer = io.BytesIO()
    np.savez(buffer, vectors=batch.vectors, texts=np.asarray(batch.texts, dtype=np.str_))
    return buffer.getvalue()


def unpack_query_batch(payload: bytes) -> QueryBatch:
    """Decode bytes produced by :func:`pack_query_batch`.

    Raises:
        DecodeFailureError: If the payload is not a valid query batch archive.
    """
    try:
        with np.load(io.BytesIO(payload), allow_pickle=False) as archive:
            vectors = np.array(archive["vectors"], dtype=np.float32)
            texts = [str(text) for text in archive["texts"].tolist()]
    except (EOFError, KeyError, OSError, ValueError, zipfile.BadZipFile) as exc:
        raise DecodeFailureError(f"invalid query batch payload: {exc}") from exc
    try:
        return QueryBatch(vectors, texts)
    except ValueError as exc:
        raise DecodeFailureError(str(exc)) from exc
