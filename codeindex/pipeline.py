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

"""Chunk → embed → upsert orchestration.

The pipeline pulls chunks from the chunker into a buffer of the active
model's batch size and flushes one batch at a time:

    chunks ──► buffer ──► fallback sketches ──► embed ──► validate ──► upsert

A failed batch aborts the run and propagates; batches flushed before it
stay committed. Ingestion runs and model switches share one lock, so a
switch waits for an in-flight run and no batch ever mixes two models.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List, Optional, Set, Union

from codeindex.chunking.chunker import SemanticChunker
from codeindex.embeddings.batch import BatchProcessor
from codeindex.embeddings.manager import EmbeddingModelManager
from codeindex.embeddings.models import BaseEmbeddingModel, EmbeddingModelKind
from codeindex.errors import DimensionMismatch, EmbeddingFailure, ParseFailure
from codeindex.ignore_patterns import relative_to_root
from codeindex.models import Chunk, Point, point_id
from codeindex.vector.fallback import FallbackArtifacts, NGramVector
from codeindex.vector.indexer import VectorIndexer
from codeindex.vector.stores import VectorStoreRegistry

if TYPE_CHECKING:
    from codeindex.config import IndexerConfig

logger = logging.getLogger(__name__)


@dataclass
class IngestStats:
    """Summary of one ingestion run."""

    files_indexed: int = 0
    files_failed: int = 0
    chunks_embedded: int = 0
    batches_flushed: int = 0
    files_removed: int = 0
    duration_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)
    indexed_files: Set[str] = field(default_factory=set)
    failed_files: Set[str] = field(default_factory=set)
    rejected_files: Set[str] = field(default_factory=set)

    def record_error(
        self, error: Exception, file_path: Optional[str] = None, permanent: bool = False
    ) -> None:
        """Count a failed file. ``permanent`` failures also land in rejected_files."""
        self.files_failed += 1
        self.errors.append(str(error))
        if file_path:
            self.failed_files.add(file_path)
            if permanent:
                self.rejected_files.add(file_path)


class VectorPipeline:
    """Drives chunking, embedding and indexing for a repository."""

    def __init__(
        self,
        chunker: SemanticChunker,
        manager: EmbeddingModelManager,
        indexer: VectorIndexer,
        batch_processor: Optional[BatchProcessor] = None,
        fallback: Optional[FallbackArtifacts] = None,
        fallback_directory: Optional[Union[str, Path]] = None,
    ):
        """Initialize the pipeline.

        Args:
            chunker: Source of chunks
            manager: Embedding model manager (must be initialized)
            indexer: Owner of the target collection
            batch_processor: Embeds batches. Defaults to one over manager.
            fallback: Lexical artifacts to update. A fresh set if None.
            fallback_directory: Where fallback artifacts are persisted after
                                each run (None = not persisted)
        """
        self.chunker = chunker
        self.manager = manager
        self.indexer = indexer
        self.batch_processor = batch_processor or BatchProcessor(manager)
        self.fallback = fallback if fallback is not None else FallbackArtifacts()
        self.fallback_directory = Path(fallback_directory) if fallback_directory else None
        self._buffer: List[Chunk] = []
        self._lock = asyncio.Lock()

    @classmethod
    async def from_config(
        cls, config: "IndexerConfig", root: Union[str, Path]
    ) -> "VectorPipeline":
        """Build a pipeline with the configured model, store and chunker.

        Previously persisted fallback artifacts under root are loaded; a
        corrupt set is logged and replaced.
        """
        manager = EmbeddingModelManager(config.embedding)
        await manager.initialize()

        store = VectorStoreRegistry.create(config.vector_store)
        indexer = VectorIndexer(
            store, manager.dimension(), timeout=config.vector_store.timeout_seconds
        )

        fallback_directory = config.fallback_directory(root)
        try:
            fallback = await asyncio.to_thread(FallbackArtifacts.load, fallback_directory)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable fallback artifacts in {fallback_directory}: {e}")
            fallback = FallbackArtifacts()

        return cls(
            chunker=SemanticChunker(config.chunking),
            manager=manager,
            indexer=indexer,
            batch_processor=BatchProcessor(manager, timeout=config.embedding.timeout_seconds),
            fallback=fallback,
            fallback_directory=fallback_directory,
        )

    async def _prepare(self) -> None:
        await self.indexer.ensure_collection()
        model_dimension = self.manager.dimension()
        if model_dimension != self.indexer.dimension():
            raise DimensionMismatch(
                self.indexer.dimension(),
                model_dimension,
                f"active model {self.manager.active_model.model_name} vs collection",
            )

    async def _consume(
        self,
        root: Path,
        paths: Optional[List[Path]],
        stats: IngestStats,
        forget_first: bool = False,
    ) -> None:
        """Chunk, buffer and flush.

        With ``forget_first`` each file's previous points and fallback
        entries are removed when the file first shows up in the stream,
        before any of its new chunks are buffered.
        """
        batch_size = max(1, self.batch_processor.batch_size())
        seen_files: Set[str] = set()

        async for result in self.chunker.chunk_stream(root, paths):
            if result.error is not None:
                logger.warning(f"Skipped during ingestion: {result.error}")
                failed = relative_to_root(getattr(result.error, "file_path", ""), root)
                file_path = failed.as_posix() if failed else None
                if forget_first and file_path:
                    await self._forget_file(file_path)
                stats.record_error(
                    result.error, file_path, permanent=getattr(result.error, "permanent", False)
                )
                continue

            chunk = result.chunk
            if chunk.file_path not in seen_files:
                seen_files.add(chunk.file_path)
                stats.indexed_files.add(chunk.file_path)
                if forget_first:
                    await self._forget_file(chunk.file_path)
            self._buffer.append(chunk)
            if len(self._buffer) >= batch_size:
                await self.flush_batch(stats)

        await self.flush_batch(stats)
        stats.files_indexed = len(stats.indexed_files)

    async def ingest_repository(self, root: Union[str, Path]) -> IngestStats:
        """Index every file under root.

        Points left by an earlier index of a file are replaced, so constructs
        that moved or disappeared do not linger.

        Raises:
            EmbeddingFailure, DimensionMismatch, IndexUpsertFailure: the
                first failed batch; earlier batches remain indexed
        """
        root = Path(root)
        stats = IngestStats()
        start = time.perf_counter()

        async with self._lock:
            await self._prepare()
            try:
                await self._consume(root, None, stats, forget_first=True)
            finally:
                self._buffer = []
                stats.duration_seconds = time.perf_counter() - start

        await self.persist_fallback()
        logger.info(
            f"Indexed {stats.files_indexed} files ({stats.chunks_embedded} chunks, "
            f"{stats.batches_flushed} batches, {stats.files_failed} skipped) "
            f"in {stats.duration_seconds:.2f}s"
        )
        return stats

    async def ingest_files(
        self, root: Union[str, Path], paths: Iterable[Union[str, Path]]
    ) -> IngestStats:
        """Reindex only the given files.

        Each file's previous points and fallback entries are removed first,
        so constructs that disappeared from a file do not linger. Paths that
        no longer exist are only removed.
        """
        root = Path(root)
        stats = IngestStats()
        start = time.perf_counter()

        present: List[Path] = []
        async with self._lock:
            await self._prepare()
            for path in paths:
                relative = relative_to_root(path, root)
                if relative is None:
                    stats.record_error(ParseFailure(path, f"outside repository root {root}"))
                    continue
                await self._forget_file(relative.as_posix(), stats)
                if (root / relative).is_file():
                    present.append(relative)

            try:
                await self._consume(root, present, stats)
            finally:
                self._buffer = []
                stats.duration_seconds = time.perf_counter() - start

        await self.persist_fallback()
        logger.info(
            f"Reindexed {stats.files_indexed}/{len(present)} files "
            f"({stats.chunks_embedded} chunks) in {stats.duration_seconds:.2f}s"
        )
        return stats

    async def remove_files(
        self, root: Union[str, Path], paths: Iterable[Union[str, Path]]
    ) -> int:
        """Delete the points and fallback entries of deleted files.

        Returns:
            Number of points removed from the vector store
        """
        root = Path(root)
        removed = 0
        async with self._lock:
            for path in paths:
                relative = relative_to_root(path, root)
                if relative is not None:
                    removed += await self._forget_file(relative.as_posix())
        await self.persist_fallback()
        return removed

    async def _forget_file(self, file_path: str, stats: Optional[IngestStats] = None) -> int:
        removed = await self.indexer.delete_by_file(file_path)
        self.fallback.forget_file(file_path)
        if removed:
            if stats is not None:
                stats.files_removed += 1
            logger.debug(f"Removed {removed} points for {file_path}")
        return removed


    async def flush_batch(self, stats: Optional[IngestStats] = None) -> int:
        """Embed, validate and upsert the buffered chunks.

        Fallback sketches are recorded for every chunk before embedding, so
        they exist even when the batch fails.

        Returns:
            Number of points upserted
        """
        if not self._buffer:
            return 0
        batch, self._buffer = self._buffer, []

        for chunk in batch:
            self.fallback.record_chunk(point_id(chunk), chunk, NGramVector.from_text(chunk.text))

        vectors = await self.batch_processor.embed_chunks(batch)

        dimension = self.indexer.dimension()
        points: List[Point] = []
        for chunk in batch:
            vector = vectors.get(chunk.id)
            if vector is None:
                raise EmbeddingFailure(f"No embedding returned for chunk {chunk.id}")
            if len(vector) != dimension:
                raise DimensionMismatch(
                    dimension, len(vector), f"chunk {chunk.id} of {chunk.file_path}"
                )
            points.append(Point.from_chunk(chunk, vector))

        written = await self.indexer.upsert_embeddings(points)
        if stats is not None:
            stats.chunks_embedded += written
            stats.batches_flushed += 1
        logger.debug(f"Flushed batch of {written} points")
        return written

    async def switch_embedding_model(self, kind: EmbeddingModelKind) -> BaseEmbeddingModel:
        """Switch the active embedding model, refusing incompatible ones.

        Waits for any in-flight ingestion. The candidate must produce vectors
        of the collection's dimension; otherwise DimensionMismatch is raised
        and the current model stays active.
        """
        async with self._lock:
            await self.indexer.ensure_collection()
            model = await self.manager.switch_model(
                kind, expected_dimension=self.indexer.dimension()
            )
        logger.info(f"Pipeline now embedding with {model.model_name}")
        return model

    async def persist_fallback(self) -> None:
        if self.fallback_directory is None:
            return
        try:
            await asyncio.to_thread(self.fallback.persist, self.fallback_directory)
        except OSError as e:
            logger.warning(f"Failed to persist fallback artifacts: {e}")

    async def close(self) -> None:
        await self.manager.close()
        self.indexer.close()
