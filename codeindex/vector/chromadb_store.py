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

"""ChromaDB vector store for development/testing.

ChromaDB is a lightweight embedded database perfect for:
- Local development
- Small to medium codebases (< 100k chunks)
- Tests (in-memory mode)

ChromaDB infers vector size from the first insert, so the configured
dimension is recorded in the collection metadata.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

import chromadb
from chromadb.config import Settings

from codeindex.config import VectorStoreConfig
from codeindex.models import Point
from codeindex.vector.stores import BaseVectorStore

logger = logging.getLogger(__name__)

DIMENSION_KEY = "dimension"


class ChromaDBStore(BaseVectorStore):
    """ChromaDB-backed point storage (in-memory or persistent)."""

    def __init__(self, config: VectorStoreConfig, client: Optional["chromadb.ClientAPI"] = None):
        super().__init__(config)
        self.client = client
        self._collection = None

    def _connect(self) -> "chromadb.ClientAPI":
        if self.client is not None:
            return self.client

        settings = Settings(anonymized_telemetry=False)
        if self.config.persist_directory:
            persist_dir = Path(self.config.persist_directory).expanduser()
            persist_dir.mkdir(parents=True, exist_ok=True)
            self.client = chromadb.PersistentClient(path=str(persist_dir), settings=settings)
            logger.info(f"ChromaDB persistent storage: {persist_dir}")
        else:
            self.client = chromadb.EphemeralClient(settings=settings)
            logger.info("ChromaDB in-memory storage")
        return self.client

    def _exists(self) -> bool:
        # list_collections returns names on some versions, Collection objects on others
        names = {getattr(c, "name", c) for c in self._connect().list_collections()}
        return self.collection_name in names

    def _get_collection(self):
        if self._collection is None and self._exists():
            self._collection = self._connect().get_collection(self.collection_name)
        return self._collection

    def collection_dimension(self) -> Optional[int]:
        collection = self._get_collection()
        if collection is None:
            return None

        dimension = (collection.metadata or {}).get(DIMENSION_KEY)
        if dimension is not None:
            return int(dimension)

        # Collection created elsewhere: infer from a stored vector
        sample = collection.peek(limit=1)
        embeddings = sample.get("embeddings")
        if embeddings is not None and len(embeddings) > 0:
            return len(embeddings[0])
        return None

    def create_collection(self, dimension: int) -> None:
        self._collection = self._connect().get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": self.config.distance_metric, DIMENSION_KEY: dimension},
        )
        logger.info(f"ChromaDB collection ready: {self.collection_name} (dim={dimension})")

    def upsert(self, points: Sequence[Point]) -> None:
        if not points:
            return
        collection = self._get_collection()
        if collection is None:
            raise RuntimeError(f"Collection {self.collection_name} does not exist")

        collection.upsert(
            ids=[str(point.id) for point in points],
            embeddings=[point.vector for point in points],
            metadatas=[point.payload.to_payload() for point in points],
        )

    def delete_by_file(self, file_path: str) -> int:
        collection = self._get_collection()
        if collection is None:
            return 0

        count_before = collection.count()
        collection.delete(where={"file_path": file_path})
        return count_before - collection.count()

    def count(self) -> int:
        collection = self._get_collection()
        return collection.count() if collection is not None else 0

    def clear(self) -> None:
        if self._exists():
            self._connect().delete_collection(name=self.collection_name)
        self._collection = None
