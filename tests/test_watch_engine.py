# Copyright 2026 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.

"""Tests for watch-driven incremental reindexing."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from watchdog.events import DirCreatedEvent, FileCreatedEvent, FileMovedEvent

from codeindex.config import IndexerConfig, WatchConfig
from codeindex.errors import EmbeddingFailure
from codeindex.metadata import FileChangeFilter, MetadataStore
from codeindex.models import ChangeKind, FileChangeEvent
from codeindex.pipeline import IngestStats
from codeindex.watch.engine import (
    ChangeEventHandler,
    FileSystemWatcher,
    WatchEngine,
    WatchState,
)
from tests.fakes import write_files

FAST = WatchConfig(debounce_seconds=0.05, poll_interval_seconds=0.01)
SLOW_DEBOUNCE = WatchConfig(debounce_seconds=60.0, poll_interval_seconds=0.01)


def stats_for(root, paths) -> IngestStats:
    indexed = {Path(p).relative_to(root).as_posix() for p in paths}
    return IngestStats(files_indexed=len(indexed), chunks_embedded=len(indexed), indexed_files=indexed)


def mock_pipeline() -> MagicMock:
    pipeline = MagicMock()
    pipeline.ingest_files = AsyncMock(side_effect=stats_for)
    pipeline.ingest_repository = AsyncMock(
        side_effect=lambda r: stats_for(r, [p for p in Path(r).rglob("*.py")])
    )
    pipeline.remove_files = AsyncMock(return_value=1)
    return pipeline


def make_engine(root: Path, pipeline, config: WatchConfig = FAST) -> WatchEngine:
    store = MetadataStore(root.parent / "state" / "metadata.json", root=root)
    return WatchEngine(root, pipeline, FileChangeFilter(store), config=config)


@pytest.fixture
def repo(tmp_path) -> Path:
    root = tmp_path / "repo"
    write_files(root, {f"mod_{i}.py": f"value = {i}\n" for i in range(3)})
    return root.resolve()


class TestUpdateIndexForChanges:
    """Test one reindex cycle."""

    @pytest.mark.asyncio
    async def test_targeted_reindex(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline)
        changed = [repo / "mod_0.py", repo / "mod_1.py"]

        report = await engine.update_index_for_changes(repo, changed)

        assert report.succeeded
        assert not report.full_reindex
        assert report.reindexed == 2
        assert report.metadata_updated == 2
        pipeline.ingest_files.assert_awaited_once_with(repo, changed)
        pipeline.ingest_repository.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_many_changes_trigger_full_reindex(self, tmp_path):
        root = tmp_path / "big"
        write_files(root, {f"pkg/file_{i:03d}.py": f"n = {i}\n" for i in range(150)})
        root = root.resolve()
        pipeline = mock_pipeline()
        engine = make_engine(root, pipeline)

        report = await engine.update_index_for_changes(root, sorted(root.rglob("*.py")))

        assert report.full_reindex
        assert report.reindexed == 150
        assert report.metadata_updated == 150
        pipeline.ingest_repository.assert_awaited_once_with(root)
        pipeline.ingest_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_threshold_is_configurable(self, repo):
        pipeline = mock_pipeline()
        config = WatchConfig(full_reindex_threshold=1)
        engine = make_engine(repo, pipeline, config)

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py", repo / "mod_1.py"])

        assert report.full_reindex
        assert engine.should_full_reindex(2)
        assert not engine.should_full_reindex(1)

    @pytest.mark.asyncio
    async def test_unchanged_files_skip_the_pipeline(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline)
        await engine.update_index_for_changes(repo, [repo / "mod_0.py"])
        pipeline.ingest_files.reset_mock()

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py"])

        assert report.skipped == 1
        assert report.skipped_files == [str(repo / "mod_0.py")]
        pipeline.ingest_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted_files_are_removed(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline)
        await engine.update_index_for_changes(repo, [repo / "mod_0.py"])
        (repo / "mod_0.py").unlink()

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py"])

        assert report.deleted == 1
        pipeline.remove_files.assert_awaited_once_with(repo, [repo / "mod_0.py"])
        assert engine.change_filter.store.get(repo / "mod_0.py") is None

    @pytest.mark.asyncio
    async def test_failure_is_reported_and_metadata_untouched(self, repo):
        pipeline = mock_pipeline()
        pipeline.ingest_files.side_effect = EmbeddingFailure("embedding backend down")
        engine = make_engine(repo, pipeline)

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py"])

        assert not report.succeeded
        assert "Index update failed" in report.error
        assert "embedding backend down" in report.error
        assert len(engine.change_filter.store) == 0
        assert engine.status()["failures"] == 1

    @pytest.mark.asyncio
    async def test_failed_files_are_not_recorded(self, repo):
        pipeline = mock_pipeline()

        def partial(root, paths):
            stats = stats_for(root, paths[:1])
            stats.record_error(RuntimeError("bad file"), "mod_1.py")
            return stats

        pipeline.ingest_files.side_effect = partial
        engine = make_engine(repo, pipeline)

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py", repo / "mod_1.py"])

        assert report.metadata_updated == 1
        assert engine.change_filter.store.get(repo / "mod_1.py") is None

    @pytest.mark.asyncio
    async def test_no_changes(self, repo):
        pipeline = mock_pipeline()
        report = await make_engine(repo, pipeline).update_index_for_changes(repo, [])
        assert report.changed == 0
        pipeline.ingest_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_relative_paths_are_taken_against_root(self, repo, tmp_path, monkeypatch):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline)
        await engine.update_index_for_changes(repo, [repo / "mod_0.py"])
        (repo / "mod_0.py").write_text("value = 'edited'\n")
        monkeypatch.chdir(tmp_path)

        report = await engine.update_index_for_changes(repo, ["mod_0.py"])

        assert report.deleted == 0
        assert report.reindexed == 1
        pipeline.remove_files.assert_not_awaited()
        pipeline.ingest_files.assert_awaited_with(repo, [repo / "mod_0.py"])

    @pytest.mark.asyncio
    async def test_repeated_paths_count_once(self, repo):
        engine = make_engine(repo, mock_pipeline())

        report = await engine.update_index_for_changes(
            repo, [repo / "mod_0.py", "mod_0.py", repo / "mod_0.py"]
        )

        assert report.changed == 1
        assert report.reindexed + report.skipped == report.changed

    @pytest.mark.asyncio
    async def test_save_during_reindex_is_picked_up_next_cycle(self, repo):
        pipeline = mock_pipeline()

        def save_while_indexing(root, paths):
            (repo / "mod_0.py").write_text("value = 'saved again while indexing'\n")
            return stats_for(root, paths)

        pipeline.ingest_files.side_effect = save_while_indexing
        engine = make_engine(repo, pipeline)
        await engine.update_index_for_changes(repo, [repo / "mod_0.py"])
        pipeline.ingest_files.side_effect = stats_for

        report = await engine.update_index_for_changes(repo, [repo / "mod_0.py"])

        assert report.skipped == 0
        assert report.reindexed == 1
        assert pipeline.ingest_files.await_count == 2

    @pytest.mark.asyncio
    async def test_rejected_file_is_not_retried_until_it_changes(self, pipeline, repo):
        (repo / "blob.py").write_bytes(b"\x00\x01\x02")
        engine = make_engine(repo, pipeline)

        first = await engine.update_index_for_changes(repo, [repo / "blob.py"])
        second = await engine.update_index_for_changes(repo, [repo / "blob.py"])

        assert first.reindexed == 0
        assert first.metadata_updated == 1
        assert second.skipped == 1


    @pytest.mark.asyncio
    async def test_with_real_pipeline(self, pipeline, fake_store, repo):
        engine = make_engine(repo, pipeline)
        changed = [repo / "mod_0.py", repo / "mod_2.py"]

        first = await engine.update_index_for_changes(repo, changed)
        second = await engine.update_index_for_changes(repo, changed)

        assert first.reindexed == 2
        assert fake_store.file_paths() == ["mod_0.py", "mod_2.py"]
        assert second.skipped == 2


class TestRecordChange:
    """Test event admission."""

    def test_events_outside_root_or_ignored(self, repo):
        engine = make_engine(repo, mock_pipeline())

        assert engine.record_change(FileChangeEvent(path=repo / "mod_0.py"))
        assert not engine.record_change(FileChangeEvent(path=repo / ".git" / "index"))
        assert not engine.record_change(FileChangeEvent(path=repo / "node_modules" / "x.js"))
        assert not engine.record_change(FileChangeEvent(path=Path("/somewhere/else.py")))
        assert engine.state == WatchState.COLLECTING
        assert engine.status()["ignored_events"] == 3
        assert engine.status()["pending_changes"] == 1


class TestWatchLoop:
    """Test the event loop lifecycle."""

    @pytest.mark.asyncio
    async def test_burst_of_events_gives_one_cycle(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline, WatchConfig(debounce_seconds=0.3, poll_interval_seconds=0.01))
        queue = asyncio.Queue()
        for _ in range(100):
            queue.put_nowait(FileChangeEvent(path=repo / "mod_1.py"))

        await asyncio.wait_for(engine.run(queue, timeout=1.0), timeout=5)

        pipeline.ingest_files.assert_awaited_once_with(repo, [repo / "mod_1.py"])
        assert engine.status()["cycles"] == 1
        assert engine.state == WatchState.IDLE

    @pytest.mark.asyncio
    async def test_failed_cycle_does_not_stop_the_loop(self, repo):
        pipeline = mock_pipeline()
        pipeline.ingest_files.side_effect = [EmbeddingFailure("down"), stats_for(repo, [repo / "mod_2.py"])]
        engine = make_engine(repo, pipeline)
        queue = asyncio.Queue()

        task = asyncio.create_task(engine.run(queue, timeout=2.0))
        queue.put_nowait(FileChangeEvent(path=repo / "mod_1.py"))
        await asyncio.sleep(0.3)
        queue.put_nowait(FileChangeEvent(path=repo / "mod_2.py"))
        await asyncio.sleep(0.3)
        queue.put_nowait(None)
        await asyncio.wait_for(task, timeout=5)

        status = engine.status()
        assert status["cycles"] == 2
        assert status["failures"] == 1
        assert status["last_report"]["error"] is None

    @pytest.mark.asyncio
    async def test_stop_event_flushes_pending_changes(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline, SLOW_DEBOUNCE)
        queue = asyncio.Queue()
        stop = asyncio.Event()

        task = asyncio.create_task(engine.run(queue, stop_event=stop))
        queue.put_nowait(FileChangeEvent(path=repo / "mod_0.py"))
        await asyncio.sleep(0.1)
        stop.set()
        await asyncio.wait_for(task, timeout=5)

        pipeline.ingest_files.assert_awaited_once_with(repo, [repo / "mod_0.py"])

    @pytest.mark.asyncio
    async def test_disconnect_exits_without_flushing(self, repo):
        pipeline = mock_pipeline()
        engine = make_engine(repo, pipeline, SLOW_DEBOUNCE)
        queue = asyncio.Queue()
        queue.put_nowait(FileChangeEvent(path=repo / "mod_0.py"))
        queue.put_nowait(None)

        await asyncio.wait_for(engine.run(queue), timeout=5)

        pipeline.ingest_files.assert_not_awaited()
        assert engine.status()["pending_changes"] == 1

    @pytest.mark.asyncio
    async def test_session_timeout(self, repo):
        config = WatchConfig(session_timeout_seconds=0.05, poll_interval_seconds=0.01)
        engine = make_engine(repo, mock_pipeline(), config)

        await asyncio.wait_for(engine.run(asyncio.Queue()), timeout=5)

        assert engine.state == WatchState.IDLE


class TestFileSystemEvents:
    """Test the watchdog bridge."""

    @pytest.mark.asyncio
    async def test_handler_forwards_events(self, tmp_path):
        queue = asyncio.Queue()
        handler = ChangeEventHandler(asyncio.get_running_loop(), queue)

        handler.on_created(FileCreatedEvent(str(tmp_path / "new.py")))
        handler.on_created(DirCreatedEvent(str(tmp_path / "pkg")))
        handler.on_moved(FileMovedEvent(str(tmp_path / "old.py"), str(tmp_path / "renamed.py")))
        for _ in range(3):
            await asyncio.sleep(0)

        events = [queue.get_nowait() for _ in range(queue.qsize())]
        assert [(e.path.name, e.kind) for e in events] == [
            ("new.py", ChangeKind.CREATE),
            ("old.py", ChangeKind.DELETE),
            ("renamed.py", ChangeKind.CREATE),
        ]

    @pytest.mark.asyncio
    async def test_watcher_stop_closes_channel(self, tmp_path):
        queue = asyncio.Queue()
        watcher = FileSystemWatcher(tmp_path, queue)

        watcher.start()
        assert watcher.running
        watcher.stop()

        assert not watcher.running
        assert await asyncio.wait_for(queue.get(), timeout=2) is None

    def test_from_config_uses_state_directory(self, tmp_path):
        config = IndexerConfig(watch=FAST)
        engine = WatchEngine.from_config(config, tmp_path, mock_pipeline())

        assert engine.change_filter.store.storage_path == tmp_path / ".codeindex" / "metadata.json"
        assert engine.config.debounce_seconds == 0.05
