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

"""Vector store interface and registry.

This module separates concerns:
1. **Vector Store**: stores points in a collection (ChromaDB, LanceDB)
2. **VectorIndexer**: owns dimension checks, timeouts and retries on top of a store

Store methods are synchronous because both backends are embedded
libraries; the indexer runs them in worker threads.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from codeindex.models import Point

if TYPE_CHECKING:
    from codeindex.config import VectorStoreConfig

logger = logging.getLogger(__name__)


class BaseVectorStore(ABC):
    """Abstract base class for vector store backends."""

    def __init__(self, config: "VectorStoreConfig"):
        self.config = config

    @property
    def collection_name(self) -> str:
        return self.config.collection_name

    @abstractmethod
    def collection_dimension(self) -> Optional[int]:
        """Vector size of the existing collection, or None if it does not exist."""
        pass

    @abstractmethod
    def create_collection(self, dimension: int) -> None:
        """Create the collection sized to dimension. Must tolerate an existing one."""
        pass

    @abstractmethod
    def upsert(self, points: Sequence[Point]) -> None:
        """Insert or overwrite points by id."""
        pass

    @abstractmethod
    def delete_by_file(self, file_path: str) -> int:
        """Delete all points whose payload file_path matches.

        Returns:
            Number of points deleted
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of points in the collection (0 when absent)."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Drop every point (the collection is dropped as well)."""
        pass

    def close(self) -> None:
        """Release connections. Embedded backends have nothing to release."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(collection={self.collection_name})"


StoreFactory = Callable[["VectorStoreConfig"], BaseVectorStore]


def _create_chromadb(config: "VectorStoreConfig") -> BaseVectorStore:
    from codeindex.vector.chromadb_store import ChromaDBStore

    return ChromaDBStore(config)


def _create_lancedb(config: "VectorStoreConfig") -> BaseVectorStore:
    from codeindex.vector.lancedb_store import LanceDBStore

    return LanceDBStore(config)


class VectorStoreRegistry:
    """Central registry for vector store backends.

    Usage:
        # Register a backend
        VectorStoreRegistry.register("mystore", MyStore)

        # Create a backend
        store = VectorStoreRegistry.create(VectorStoreConfig(backend="chromadb"))
    """

    _factories: Dict[str, StoreFactory] = {
        "chromadb": _create_chromadb,
        "lancedb": _create_lancedb,
    }

    @classmethod
    def register(cls, name: str, factory: StoreFactory) -> None:
        """Register a backend class or factory under a name."""
        cls._factories[name] = factory
        logger.debug(f"Registered vector store backend: {name}")

    @classmethod
    def create(cls, config: "VectorStoreConfig") -> BaseVectorStore:
        """Create a backend instance from configuration.

        Raises:
            KeyError: If the backend is not registered
        """
        if config.backend not in cls._factories:
            available = ", ".join(sorted(cls._factories))
            raise KeyError(f"Unknown vector store backend: {config.backend}. Available: {available}")
        return cls._factories[config.backend](config)

    @classmethod
    def list_backends(cls) -> List[str]:
        return sorted(cls._factories)

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._factories
