# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Vector storage and lexical fallback artifacts.

Backends (chromadb, lancedb) are imported lazily by the registry so that
only the configured one needs to be installed.
"""

from codeindex.vector.stores import BaseVectorStore, VectorStoreRegistry
from codeindex.vector.indexer import VectorIndexer
from codeindex.vector.fallback import (
    FallbackArtifacts,
    IdentifierProfile,
    NGramVector,
    PmiGraph,
    identifier_tokens,
)

__all__ = [
    "BaseVectorStore",
    "VectorStoreRegistry",
    "VectorIndexer",
    "FallbackArtifacts",
    "IdentifierProfile",
    "NGramVector",
    "PmiGraph",
    "identifier_tokens",
]
