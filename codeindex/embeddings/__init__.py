# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Embedding generation for code chunks.

    from codeindex.embeddings import EmbeddingModelManager, BatchProcessor

    manager = EmbeddingModelManager(settings)
    await manager.initialize()
    vectors = await BatchProcessor(manager).embed_chunks(chunks)
"""

from codeindex.embeddings.models import (
    BaseEmbeddingModel,
    CohereEmbeddingModel,
    EmbeddingModelConfig,
    EmbeddingModelKind,
    OllamaEmbeddingModel,
    OpenAIEmbeddingModel,
    SentenceTransformerModel,
    create_embedding_model,
)
from codeindex.embeddings.manager import EmbeddingModelManager
from codeindex.embeddings.batch import BatchProcessor

__all__ = [
    "BaseEmbeddingModel",
    "EmbeddingModelConfig",
    "EmbeddingModelKind",
    "SentenceTransformerModel",
    "OllamaEmbeddingModel",
    "OpenAIEmbeddingModel",
    "CohereEmbeddingModel",
    "create_embedding_model",
    "EmbeddingModelManager",
    "BatchProcessor",
]
