# Copyright 2026 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.

"""Tests for the chunk, embed and upsert pipeline."""

import asyncio

import pytest

from codeindex.embeddings.manager import EmbeddingModelManager
from codeindex.embeddings.models import EmbeddingModelKind
from codeindex.errors import DimensionMismatch, EmbeddingFailure
from codeindex.pipeline import VectorPipeline
from codeindex.vector.indexer import VectorIndexer
from tests.fakes import FakeEmbeddingModel, FakeVectorStore, fake_settings, write_files

ST = EmbeddingModelKind.SENTENCE_TRANSFORMERS
OLLAMA = EmbeddingModelKind.OLLAMA

FIVE_FILES = {f"{name}.txt": f"content of {name}\n" for name in "abcde"}


class FailAfterFirstBatch(FakeEmbeddingModel):
    async def embed_batch(self, texts):
        if self.batches:
            raise ConnectionError("backend went away")
        return await super().embed_batch(texts)


class GatedEmbeddingModel(FakeEmbeddingModel):
    """Holds every batch until the gate opens."""

    def __init__(self, config, entered: asyncio.Event, gate: asyncio.Event):
        super().__init__(config)
        self.entered = entered
        self.gate = gate

    async def embed_batch(self, texts):
        self.entered.set()
        await self.gate.wait()
        return await super().embed_batch(texts)



async def build_pipeline(plain_chunker, store, settings=None, factory=FakeEmbeddingModel, **kwargs):
    manager = EmbeddingModelManager(settings or fake_settings(), model_factory=factory)
    await manager.initialize()
    return VectorPipeline(plain_chunker, manager, VectorIndexer(store, manager.dimension()), **kwargs)


class TestIngestRepository:
    """Test full repository ingestion."""

    @pytest.mark.asyncio
    async def test_chunks_flushed_in_model_batches(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)

        stats = await pipeline.ingest_repository(tmp_path)

        assert stats.files_indexed == 5
        assert stats.chunks_embedded == 5
        assert stats.batches_flushed == 3
        assert stats.files_failed == 0
        assert fake_store.count() == 5
        assert [len(batch) for batch in pipeline.manager.active_model.batches] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_payload_carries_chunk_metadata(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, {"pkg/mod.txt": "one\ntwo\n"})

        await pipeline.ingest_repository(tmp_path)

        (point,) = fake_store.points.values()
        assert point.payload.file_path == "pkg/mod.txt"
        assert (point.payload.start_line, point.payload.end_line) == (1, 2)
        assert len(point.vector) == 8

    @pytest.mark.asyncio
    async def test_reingest_does_not_duplicate(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)

        await pipeline.ingest_repository(tmp_path)
        await pipeline.ingest_repository(tmp_path)

        assert fake_store.count() == 5

    @pytest.mark.asyncio
    async def test_unparseable_files_are_skipped(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, {"a.txt": "alpha\n"})
        (tmp_path / "b.bin").write_bytes(b"\x00\xff")

        stats = await pipeline.ingest_repository(tmp_path)

        assert stats.files_indexed == 1
        assert stats.files_failed == 1
        assert stats.failed_files == {"b.bin"}
        assert fake_store.file_paths() == ["a.txt"]

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_earlier_batches(self, plain_chunker, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)
        pipeline = await build_pipeline(plain_chunker, fake_store, factory=FailAfterFirstBatch)

        with pytest.raises(EmbeddingFailure, match="backend went away"):
            await pipeline.ingest_repository(tmp_path)

        assert fake_store.file_paths() == ["a.txt", "b.txt"]
        # Sketches for the failed batch were recorded before embedding
        assert len(pipeline.fallback) == 4

    @pytest.mark.asyncio
    async def test_model_and_collection_dimension_must_agree(self, plain_chunker, tmp_path):
        store = FakeVectorStore(dimension=16)
        write_files(tmp_path, FIVE_FILES)
        pipeline = await build_pipeline(plain_chunker, store)

        with pytest.raises(DimensionMismatch):
            await pipeline.ingest_repository(tmp_path)

        assert store.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_fallback_persisted_after_run(self, plain_chunker, fake_store, tmp_path):
        root = tmp_path / "repo"
        state = tmp_path / "state"
        write_files(root, FIVE_FILES)
        pipeline = await build_pipeline(plain_chunker, fake_store, fallback_directory=state)

        await pipeline.ingest_repository(root)

        assert (state / "ngrams.json").exists()
        assert (state / "pmi_graph.json").exists()
        assert (state / "identifiers.json").exists()

    @pytest.mark.asyncio
    async def test_reingest_replaces_points_of_changed_files(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, {"a.txt": "x = 1\n", "b.txt": "other\n"})
        await pipeline.ingest_repository(tmp_path)

        write_files(tmp_path, {"a.txt": "x = 1\ny = 2\nz = 3\n"})
        (tmp_path / "b.txt").write_bytes(b"\x00\x01")
        stats = await pipeline.ingest_repository(tmp_path)

        spans = [(p.payload.start_line, p.payload.end_line) for p in fake_store.points.values()]
        assert spans == [(1, 3)]
        assert fake_store.file_paths() == ["a.txt"]
        assert len(pipeline.fallback) == 1
        assert stats.rejected_files == {"b.txt"}



class TestIncrementalIngestion:
    """Test file-scoped reindexing and removal."""

    @pytest.mark.asyncio
    async def test_ingest_files_replaces_previous_points(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, {"a.txt": "short\n", "b.txt": "other\n"})
        await pipeline.ingest_repository(tmp_path)
        old_ids = {pid for pid, p in fake_store.points.items() if p.payload.file_path == "a.txt"}

        write_files(tmp_path, {"a.txt": "now\nthree\nlines\n"})
        stats = await pipeline.ingest_files(tmp_path, [tmp_path / "a.txt"])

        a_points = [p for p in fake_store.points.values() if p.payload.file_path == "a.txt"]
        assert stats.files_indexed == 1
        assert len(a_points) == 1
        assert a_points[0].payload.end_line == 3
        assert not old_ids & set(fake_store.points)
        assert fake_store.count() == 2
        assert len(pipeline.fallback) == 2

    @pytest.mark.asyncio
    async def test_ingest_files_only_touches_given_files(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)

        stats = await pipeline.ingest_files(tmp_path, ["c.txt"])

        assert stats.indexed_files == {"c.txt"}
        assert fake_store.file_paths() == ["c.txt"]

    @pytest.mark.asyncio
    async def test_ingest_files_drops_missing_file(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, {"a.txt": "alpha\n", "b.txt": "beta\n"})
        await pipeline.ingest_repository(tmp_path)

        (tmp_path / "a.txt").unlink()
        stats = await pipeline.ingest_files(tmp_path, ["a.txt"])

        assert stats.files_removed == 1
        assert stats.files_indexed == 0
        assert fake_store.file_paths() == ["b.txt"]

    @pytest.mark.asyncio
    async def test_path_outside_root_is_reported(self, pipeline, tmp_path):
        stats = await pipeline.ingest_files(tmp_path / "repo", [tmp_path / "elsewhere.txt"])

        assert stats.files_failed == 1
        assert "outside repository root" in stats.errors[0]

    @pytest.mark.asyncio
    async def test_remove_files(self, pipeline, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)
        await pipeline.ingest_repository(tmp_path)

        removed = await pipeline.remove_files(tmp_path, [tmp_path / "a.txt", "b.txt"])

        assert removed == 2
        assert fake_store.file_paths() == ["c.txt", "d.txt", "e.txt"]
        assert len(pipeline.fallback) == 3


class TestModelSwitching:
    """Test model switches through the pipeline."""

    @pytest.mark.asyncio
    async def test_incompatible_model_refused(self, plain_chunker, fake_store, tmp_path):
        settings = fake_settings({ST: 8, OLLAMA: 16})
        pipeline = await build_pipeline(plain_chunker, fake_store, settings=settings)

        with pytest.raises(DimensionMismatch):
            await pipeline.switch_embedding_model(OLLAMA)

        assert pipeline.manager.active_kind == ST

    @pytest.mark.asyncio
    async def test_compatible_model_used_for_next_run(self, plain_chunker, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)
        settings = fake_settings({ST: 8, OLLAMA: 8})
        pipeline = await build_pipeline(plain_chunker, fake_store, settings=settings)

        model = await pipeline.switch_embedding_model(OLLAMA)
        await pipeline.ingest_repository(tmp_path)

        assert pipeline.manager.active_model is model
        assert sum(len(batch) for batch in model.batches) == 5

    @pytest.mark.asyncio
    async def test_switch_waits_for_running_ingestion(self, plain_chunker, fake_store, tmp_path):
        write_files(tmp_path, FIVE_FILES)
        entered, gate = asyncio.Event(), asyncio.Event()
        pipeline = await build_pipeline(
            plain_chunker,
            fake_store,
            settings=fake_settings({ST: 8, OLLAMA: 8}),
            factory=lambda config: GatedEmbeddingModel(config, entered, gate),
        )
        original = pipeline.manager.active_model

        ingest = asyncio.create_task(pipeline.ingest_repository(tmp_path))
        await asyncio.wait_for(entered.wait(), timeout=5)
        switch = asyncio.create_task(pipeline.switch_embedding_model(OLLAMA))
        await asyncio.sleep(0.05)

        assert not switch.done()
        assert pipeline.manager.active_model is original

        gate.set()
        stats = await asyncio.wait_for(ingest, timeout=5)
        model = await asyncio.wait_for(switch, timeout=5)

        assert stats.chunks_embedded == 5
        assert sum(len(batch) for batch in original.batches) == 5
        assert model.batches == []
        assert original.closed
        assert pipeline.manager.active_model is model
