"""Helpers for extracting cluster and batch identifiers from object keys.

Request keys look like ``/rag/emb/clusters_search/client3_qb17_cluster42``:
the cluster id is the integer that immediately follows the last
``_cluster`` delimiter, and the optional ``client{C}_qb{B}`` tag identifies
the originating client and query batch for log correlation.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple

from .errors import MalformedKeyError

__all__ = ["CLUSTER_KEY_DELIMITER", "cluster_prefix", "parse_batch_id", "parse_cluster_id"]

CLUSTER_KEY_DELIMITER = "_cluster"

_DIGITS = re.compile(r"\d+")
_BATCH_TAG = re.compile(r"client(\d+)_qb(\d+)")


def parse_cluster_id(key: str, delimiter: str = CLUSTER_KEY_DELIMITER) -> int:
    """Return the cluster id encoded in ``key``.

    Args:
        key: Object key received with the request.
        delimiter: Marker preceding the cluster id.

    Returns:
        Non-negative integer cluster id.

    Raises:
        MalformedKeyError: If the delimiter is absent or not followed by digits.

    Examples:
        >>> parse_cluster_id("/rag/emb/clusters_search/client0_qb1_cluster7")
        7
    """
    position = key.rfind(delimiter)
    if position < 0:
        raise MalformedKeyError(f"cluster delimiter {delimiter!r} not found in key {key!r}")
    match = _DIGITS.match(key, position + len(delimiter))
    if match is None:
        raise MalformedKeyError(f"no cluster id follows {delimiter!r} in key {key!r}")
    return int(match.group(0))


def parse_batch_id(key: str) -> Optional[Tuple[int, int]]:
    """Return ``(client_id, query_batch_id)`` when ``key`` carries a batch tag."""

    match = _BATCH_TAG.search(key)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def cluster_prefix(cluster_id: int, template: str = "/rag/emb/cluster{cluster_id}") -> str:
    """Return the object-store prefix holding the embeddings of ``cluster_id``."""

    return template.format(cluster_id=int(cluster_id))
