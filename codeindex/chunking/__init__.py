# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Tree-sitter based source chunking."""

from codeindex.chunking.tree_sitter_manager import LANGUAGE_MODULES, ParserPool
from codeindex.chunking.boundaries import DEFAULT_BOUNDARY_KINDS, BoundaryKinds
from codeindex.chunking.chunker import ChunkIdSequence, SemanticChunker, SemanticUnit

__all__ = [
    "LANGUAGE_MODULES",
    "ParserPool",
    "DEFAULT_BOUNDARY_KINDS",
    "BoundaryKinds",
    "ChunkIdSequence",
    "SemanticChunker",
    "SemanticUnit",
]
