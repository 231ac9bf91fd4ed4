# Copyright 2026 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.

"""Shared fixtures for the indexing tests."""

import pytest
import pytest_asyncio

from codeindex.chunking.boundaries import BoundaryKinds
from codeindex.chunking.chunker import SemanticChunker
from codeindex.config import ChunkingConfig
from codeindex.embeddings.manager import EmbeddingModelManager
from codeindex.pipeline import VectorPipeline
from codeindex.vector.indexer import VectorIndexer
from tests.fakes import FakeEmbeddingModel, FakeVectorStore, fake_settings


@pytest.fixture
def fake_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def plain_chunker() -> SemanticChunker:
    """Chunker with no boundary kinds: every file is one chunk."""
    return SemanticChunker(ChunkingConfig(), boundary_kinds=BoundaryKinds({}))


@pytest_asyncio.fixture
async def manager() -> EmbeddingModelManager:
    manager = EmbeddingModelManager(fake_settings(), model_factory=FakeEmbeddingModel)
    await manager.initialize()
    return manager


@pytest.fixture
def pipeline(plain_chunker, manager, fake_store) -> VectorPipeline:
    indexer = VectorIndexer(fake_store, manager.dimension())
    return VectorPipeline(plain_chunker, manager, indexer)
