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

"""Vector collection ownership: sizing, validation and upserts."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional, Sequence, TypeVar

from codeindex.errors import DimensionMismatch, IndexUpsertFailure
from codeindex.models import Point
from codeindex.vector.stores import BaseVectorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VectorIndexer:
    """Owns the target vector collection.

    Every store call runs in a worker thread, is bounded by ``timeout`` and
    is retried once before the error is surfaced. Upserts overwrite by id,
    so a retried upsert cannot duplicate points.
    """

    def __init__(
        self,
        store: BaseVectorStore,
        dimension: int,
        timeout: Optional[float] = 30.0,
        max_attempts: int = 2,
    ):
        """Initialize the indexer.

        Args:
            store: Vector store backend
            dimension: Vector size used when the collection has to be created
            timeout: Per-call timeout in seconds (None = unbounded)
            max_attempts: Attempts per store call before giving up
        """
        self.store = store
        self._dimension = dimension
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self._ready = False

    def dimension(self) -> int:
        """The collection's configured vector size."""
        return self._dimension

    async def _call(self, stage: str, func: Callable[..., T], *args: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()
            try:
                result = await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
                logger.debug(f"Vector store {stage} took {time.perf_counter() - start:.3f}s")
                return result
            except Exception as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(f"Vector store {stage} failed, retrying: {e!r}")

    async def ensure_collection(self) -> int:
        """Create the collection if absent. Idempotent.

        An existing collection keeps its size: the indexer adopts it so the
        pipeline's dimension checks compare against what is really stored.

        Returns:
            The collection dimension
        """
        try:
            existing = await self._call("collection_dimension", self.store.collection_dimension)
            if existing is None:
                await self._call("create_collection", self.store.create_collection, self._dimension)
            elif existing != self._dimension:
                logger.warning(
                    f"Collection {self.store.collection_name} has dimension {existing}, "
                    f"configured {self._dimension}; using the collection's dimension"
                )
                self._dimension = existing
        except Exception as e:
            raise IndexUpsertFailure(
                f"Failed to ensure collection {self.store.collection_name}: {e}"
            ) from e

        self._ready = True
        return self._dimension

    def validate(self, points: Sequence[Point]) -> None:
        """Check every vector against the collection dimension.

        Raises:
            DimensionMismatch: on the first vector of the wrong length
        """
        for point in points:
            if len(point.vector) != self._dimension:
                raise DimensionMismatch(
                    self._dimension,
                    len(point.vector),
                    f"point {point.id} from {point.payload.file_path}",
                )

    async def upsert_embeddings(self, points: Sequence[Point]) -> int:
        """Upsert points by id.

        Returns:
            Number of points written

        Raises:
            DimensionMismatch: before any I/O, if a vector has the wrong size
            IndexUpsertFailure: if the store rejects the batch or times out
        """
        if not points:
            return 0
        self.validate(points)
        if not self._ready:
            await self.ensure_collection()

        try:
            await self._call("upsert", self.store.upsert, list(points))
        except Exception as e:
            raise IndexUpsertFailure(f"Upsert of {len(points)} points failed: {e}") from e
        return len(points)

    async def delete_by_file(self, file_path: str) -> int:
        """Remove every point that belongs to a file."""
        try:
            return await self._call("delete_by_file", self.store.delete_by_file, file_path)
        except Exception as e:
            raise IndexUpsertFailure(f"Failed to delete points for {file_path}: {e}") from e

    async def clear(self) -> None:
        await self._call("clear", self.store.clear)
        self._ready = False

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": self.store.__class__.__name__,
            "collection_name": self.store.collection_name,
            "dimension": self._dimension,
            "total_points": await self._call("count", self.store.count),
        }

    def close(self) -> None:
        self.store.close()
