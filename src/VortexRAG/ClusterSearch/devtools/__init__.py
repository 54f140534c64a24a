# === NAVMAP v1 ===
# {
#   "module": "VortexRAG.ClusterSearch.devtools.__init__",
#   "purpose": "Developer tooling helpers for VortexRAG cluster search.",
#   "sections": []
# }
# === /NAVMAP ===

"""Developer tooling helpers for VortexRAG cluster search.

The ``devtools`` package gathers the pieces needed to run the cluster search
core without a distributed object store or transport: a deterministic
embedding source, an in-memory object store, a recording result emitter, and a
stand-in payload codec. All of them satisfy the production interfaces so tests
and notebooks exercise the same code paths as a deployment.
"""

from .object_store import InMemoryObjectStore
from .payloads import pack_query_batch, unpack_query_batch
from .synthetic import RecordingEmitter, SyntheticEmbeddingSource

__all__ = (
    "InMemoryObjectStore",
    "RecordingEmitter",
    "SyntheticEmbeddingSource",
    "pack_query_batch",
    "unpack_query_batch",
)
