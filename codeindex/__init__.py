# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Semantic code indexing core.

Turns a repository's source files into AST-aligned chunks, embeds them,
stores them in a vector index, keeps a lexical fallback alongside, and
updates everything incrementally while watching the filesystem.

Package Structure:
    config.py           - Pydantic settings (YAML loadable)
    errors.py           - Error taxonomy
    models.py           - Chunk, Point and change event types
    languages.py        - Language detection
    ignore_patterns.py  - Which files a scan visits
    chunking/           - Tree-sitter parsing and semantic chunking
    embeddings/         - Embedding backends, model switching, batching
    vector/             - Vector stores, indexer and fallback artifacts
    pipeline.py         - Chunk → embed → upsert orchestration
    metadata.py         - File fingerprints and metadata gating
    watch/              - Debounced watching and incremental reindexing

Usage:
    from codeindex import IndexerConfig, VectorPipeline

    config = IndexerConfig.from_yaml("codeindex.yaml")
    pipeline = await VectorPipeline.from_config(config, "path/to/repo")
    stats = await pipeline.ingest_repository("path/to/repo")
"""

from codeindex.config import (
    ChunkingConfig,
    EmbeddingSettings,
    IndexerConfig,
    VectorStoreConfig,
    WatchConfig,
)
from codeindex.errors import (
    CodeIndexError,
    DebounceChannelDisconnect,
    DimensionMismatch,
    EmbeddingFailure,
    IndexUpsertFailure,
    MetadataIoFailure,
    ParseFailure,
    ReindexFailure,
    UnsupportedLanguage,
)
from codeindex.models import Chunk, ChunkMetadata, ChangeKind, FileChangeEvent, Point
from codeindex.pipeline import IngestStats, VectorPipeline
from codeindex.watch.engine import WatchEngine, watch_repository

__version__ = "0.1.0"

__all__ = [
    "ChunkingConfig",
    "EmbeddingSettings",
    "IndexerConfig",
    "VectorStoreConfig",
    "WatchConfig",
    "CodeIndexError",
    "DebounceChannelDisconnect",
    "DimensionMismatch",
    "EmbeddingFailure",
    "IndexUpsertFailure",
    "MetadataIoFailure",
    "ParseFailure",
    "ReindexFailure",
    "UnsupportedLanguage",
    "Chunk",
    "ChunkMetadata",
    "ChangeKind",
    "FileChangeEvent",
    "Point",
    "IngestStats",
    "VectorPipeline",
    "WatchEngine",
    "watch_repository",
]
