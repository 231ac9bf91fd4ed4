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

"""Configuration for the indexing core.

All settings are pydantic models so they can be built from dicts, YAML
files or keyword arguments. Argument parsing and config discovery belong
to the caller; this module only describes the shape and the defaults.

Example YAML:

    embedding:
      active_model: ollama
      models:
        ollama:
          model_type: ollama
          model_name: nomic-embed-text
          dimension: 768
    vector_store:
      backend: lancedb
      persist_directory: ~/.codeindex/lancedb
    watch:
      debounce_seconds: 2.0
      full_reindex_threshold: 200
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from codeindex.embeddings.models import EmbeddingModelConfig, EmbeddingModelKind

logger = logging.getLogger(__name__)


class ChunkingConfig(BaseModel):
    """Chunk extraction settings."""

    max_file_size_mb: float = Field(
        default=1.0, description="Files larger than this are skipped as oversized"
    )
    max_chunk_chars: int = Field(
        default=4000, description="Units longer than this are split at line boundaries"
    )
    boundary_kinds: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Per-language boundary node kinds, overriding the built-in table",
    )
    extra_skip_dirs: List[str] = Field(
        default_factory=list, description="Directory names to skip in addition to defaults"
    )
    repository_id: Optional[int] = Field(
        default=None, description="Repository identifier stamped on every chunk"
    )


class EmbeddingSettings(BaseModel):
    """Which embedding backend is active and how each backend is configured."""

    active_model: EmbeddingModelKind = Field(
        default=EmbeddingModelKind.SENTENCE_TRANSFORMERS,
        description="Backend used at startup",
    )
    models: Dict[EmbeddingModelKind, EmbeddingModelConfig] = Field(
        default_factory=dict, description="Per-backend model configuration"
    )
    timeout_seconds: float = Field(
        default=60.0, description="Upper bound for one embedding batch call"
    )

    def config_for(self, kind: EmbeddingModelKind) -> EmbeddingModelConfig:
        """Return the configured model for a backend, or its defaults."""
        kind = EmbeddingModelKind(kind)
        if kind in self.models:
            return self.models[kind]
        return EmbeddingModelConfig(model_type=kind)


class VectorStoreConfig(BaseModel):
    """Vector database settings."""

    backend: str = Field(default="chromadb", description="Vector store backend (chromadb, lancedb)")
    collection_name: str = Field(default="codeindex", description="Collection or table name")
    persist_directory: Optional[str] = Field(
        default=None, description="Storage directory (in-memory for chromadb when unset)"
    )
    distance_metric: str = Field(default="cosine", description="Distance metric")
    timeout_seconds: float = Field(
        default=30.0, description="Upper bound for one vector store call"
    )


class WatchConfig(BaseModel):
    """Watch loop settings."""

    debounce_seconds: float = Field(
        default=1.0, description="Window during which repeated events for a path coalesce"
    )
    poll_interval_seconds: float = Field(
        default=0.1, description="How long the loop waits for an event before re-checking"
    )
    full_reindex_threshold: int = Field(
        default=100,
        description="Gated change counts above this trigger a full repository reindex",
    )
    session_timeout_seconds: Optional[float] = Field(
        default=None, description="Stop watching after this long (None = forever)"
    )


class IndexerConfig(BaseModel):
    """Top-level configuration."""

    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    state_directory: str = Field(
        default=".codeindex",
        description="Repository-relative directory for metadata and fallback artifacts",
    )

    def metadata_path(self, root: Union[str, Path]) -> Path:
        return Path(root) / self.state_directory / "metadata.json"

    def fallback_directory(self, root: Union[str, Path]) -> Path:
        return Path(root) / self.state_directory / "fallback"

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "IndexerConfig":
        """Load configuration from a YAML file.

        A missing file yields the defaults. Malformed YAML or values that
        fail validation raise, since silently indexing with the wrong model
        would poison the vector store.
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.debug(f"No config at {path}, using defaults")
            return cls()

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls.model_validate(data)
