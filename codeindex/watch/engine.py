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

"""Watch-driven incremental indexing.

State machine:

    IDLE ──event──► COLLECTING ──window elapsed──► READY ──► REINDEXING ──► IDLE

Filesystem events are debounced per path. When the window closes, the
changed paths go through metadata gating; if more than
``full_reindex_threshold`` files survive the gate the whole repository is
reindexed, otherwise only those files are. Metadata is updated only after
a successful reindex, so a failed file is retried on the next cycle. The
fingerprints recorded are the ones taken when the paths were gated, so a
save that lands mid-reindex triggers another cycle.

A failed cycle is logged and counted; it never ends the loop. The loop
ends on the stop event (pending changes are flushed first), on a ``None``
sentinel from the event channel (disconnect), or on the session timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from codeindex.errors import DebounceChannelDisconnect, ReindexFailure
from codeindex.ignore_patterns import relative_to_root, should_ignore_path, skip_dirs_with
from codeindex.metadata import FileChangeFilter, MetadataStore
from codeindex.models import ChangeKind, FileChangeEvent
from codeindex.watch.debounce import ChangeTracker, DebounceBuffer

if TYPE_CHECKING:
    from codeindex.config import IndexerConfig, WatchConfig
    from codeindex.pipeline import IngestStats, VectorPipeline

logger = logging.getLogger(__name__)


class WatchState(str, Enum):
    IDLE = "idle"
    COLLECTING = "collecting"
    READY = "ready"
    REINDEXING = "reindexing"


@dataclass
class ReindexReport:
    """Outcome of one watch cycle."""

    changed: int = 0
    skipped: int = 0
    reindexed: int = 0
    deleted: int = 0
    full_reindex: bool = False
    metadata_updated: int = 0
    metadata_errors: int = 0
    chunks_embedded: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None
    skipped_files: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class WatchEngine:
    """Turns filesystem events into incremental index updates."""

    def __init__(
        self,
        root: Union[str, Path],
        pipeline: "VectorPipeline",
        change_filter: FileChangeFilter,
        config: Optional["WatchConfig"] = None,
        tracker: Optional[ChangeTracker] = None,
        extra_skip_dirs: Optional[Sequence[str]] = None,
    ):
        """Initialize the engine.

        Args:
            root: Repository root
            pipeline: Pipeline used for reindexing
            change_filter: Metadata gate
            config: Watch settings. Defaults to WatchConfig().
            tracker: Change tracker. One over a DebounceBuffer sized from
                     config is created if None.
            extra_skip_dirs: Directory names ignored in addition to defaults
        """
        if config is None:
            from codeindex.config import WatchConfig

            config = WatchConfig()
        self.root = Path(root).resolve()
        self.pipeline = pipeline
        self.change_filter = change_filter
        self.config = config
        self.tracker = tracker or ChangeTracker(DebounceBuffer(config.debounce_seconds))
        self._skip_dirs = skip_dirs_with(extra_skip_dirs)
        self._state = WatchState.IDLE
        self._cycles = 0
        self._failures = 0
        self._ignored_events = 0
        self._last_report: Optional[ReindexReport] = None

    @classmethod
    def from_config(
        cls, config: "IndexerConfig", root: Union[str, Path], pipeline: "VectorPipeline"
    ) -> "WatchEngine":
        """Build an engine whose metadata lives in the configured state directory."""
        store = MetadataStore(config.metadata_path(root), root=root)
        store.load()
        return cls(
            root,
            pipeline,
            FileChangeFilter(store),
            config=config.watch,
            extra_skip_dirs=config.chunking.extra_skip_dirs,
        )

    @property
    def state(self) -> WatchState:
        return self._state

    def record_change(self, event: FileChangeEvent) -> bool:
        """Queue a filesystem event for the next cycle.

        Returns:
            False if the path is outside the root or ignored
        """
        relative = relative_to_root(event.path, self.root)
        if relative is None or should_ignore_path(relative, self._skip_dirs):
            self._ignored_events += 1
            return False

        self.tracker.record_event(
            FileChangeEvent(path=self.root / relative, kind=event.kind, timestamp=event.timestamp)
        )
        if self._state == WatchState.IDLE:
            self._state = WatchState.COLLECTING
        return True

    def should_full_reindex(self, gated_count: int) -> bool:
        return gated_count > self.config.full_reindex_threshold

    async def update_index_for_changes(
        self, root: Union[str, Path], changed_files: Sequence[Union[str, Path]]
    ) -> ReindexReport:
        """Gate, reindex and record metadata for a set of changed files.

        Relative paths are taken against root and repeated paths count
        once. Never raises for reindex failures: they are logged and
        reported in ``ReindexReport.error``.
        """
        root = Path(root).resolve()
        start = time.perf_counter()
        changed = self._normalize(root, changed_files)
        report = ReindexReport(changed=len(changed))
        if not changed:
            return report

        result = await asyncio.to_thread(self.change_filter.filter_changes, changed)
        report.skipped = result.skipped_count
        report.skipped_files = [str(path) for path, _ in result.skipped_files]

        deleted = result.deleted_files
        deleted_set = set(deleted)
        to_index = [path for path in result.files_to_reindex if path not in deleted_set]
        report.deleted = len(deleted)
        report.full_reindex = self.should_full_reindex(result.reindex_count)

        try:
            if deleted:
                await self.pipeline.remove_files(root, deleted)
                await asyncio.to_thread(self.change_filter.forget, deleted)

            stats: Optional["IngestStats"] = None
            if report.full_reindex:
                logger.info(
                    f"Many files changed ({result.reindex_count}), performing full re-index"
                )
                stats = await self.pipeline.ingest_repository(root)
            elif to_index:
                logger.info(f"Re-indexing {len(to_index)} changed file(s)")
                stats = await self.pipeline.ingest_files(root, to_index)
        except Exception as e:
            failure = ReindexFailure(
                f"Index update failed for repository at {root} "
                f"({result.reindex_count} file changes): {e}"
            )
            logger.error(str(failure))
            self._failures += 1
            report.error = str(failure)
            report.duration_seconds = time.perf_counter() - start
            return report

        processed = self._processed_paths(root, to_index, stats, report.full_reindex)
        if processed:
            updated, errors = await asyncio.to_thread(
                self.change_filter.update_metadata_batch, processed, result.snapshots
            )
            report.metadata_updated = updated
            report.metadata_errors = errors

        if stats is not None:
            report.reindexed = stats.files_indexed
            report.chunks_embedded = stats.chunks_embedded
        report.duration_seconds = time.perf_counter() - start
        return report

    @staticmethod
    def _normalize(root: Path, changed_files: Sequence[Union[str, Path]]) -> List[Path]:
        unique: Dict[Path, None] = {}
        for raw in changed_files:
            path = Path(raw)
            unique.setdefault(path if path.is_absolute() else root / path, None)
        return list(unique)

    @staticmethod
    def _processed_paths(
        root: Path,
        to_index: List[Path],
        stats: Optional["IngestStats"],
        full_reindex: bool,
    ) -> List[Path]:
        """Paths whose fingerprint can be recorded after a reindex.

        Files rejected for their content (binary, oversized) are recorded
        too, so touching them again without changing them is skipped.
        """
        if stats is None:
            return []

        def failed(path: Path) -> bool:
            relative = relative_to_root(path, root)
            if relative is None:
                return True
            key = relative.as_posix()
            return key in stats.failed_files and key not in stats.rejected_files

        processed = {path for path in to_index if not failed(path)}
        if full_reindex:
            processed.update(
                root / file_path for file_path in stats.indexed_files | stats.rejected_files
            )
        return sorted(processed)


    async def process_pending(self) -> Optional[ReindexReport]:
        """Run one reindex cycle if the debounce window has elapsed."""
        if not self.tracker.is_ready():
            return None
        return await self._reindex_pending()

    async def _reindex_pending(self) -> Optional[ReindexReport]:
        self._state = WatchState.READY
        changes = self.tracker.take_changes()
        if not changes:
            self._state = WatchState.IDLE
            return None

        self._state = WatchState.REINDEXING
        try:
            # Shutdown must not interrupt an upsert followed by its metadata update
            report = await asyncio.shield(self.update_index_for_changes(self.root, changes))
        finally:
            self._state = WatchState.COLLECTING if self.tracker.has_changes() else WatchState.IDLE

        self._cycles += 1
        self._last_report = report
        if report.succeeded:
            logger.info(
                f"Watch cycle: {report.changed} changed, {report.skipped} skipped, "
                f"{report.reindexed} reindexed, {report.deleted} deleted"
                + (" (full)" if report.full_reindex else "")
            )
        return report

    async def _next_event(
        self, events: "asyncio.Queue[Optional[FileChangeEvent]]"
    ) -> Optional[FileChangeEvent]:
        """Wait up to the poll interval for an event.

        Raises:
            DebounceChannelDisconnect: If the channel delivered the None sentinel
        """
        try:
            event = await asyncio.wait_for(events.get(), timeout=self.config.poll_interval_seconds)
        except asyncio.TimeoutError:
            return None
        if event is None:
            raise DebounceChannelDisconnect("Filesystem event channel closed")
        return event

    async def run(
        self,
        events: "asyncio.Queue[Optional[FileChangeEvent]]",
        stop_event: Optional[asyncio.Event] = None,
        timeout: Optional[float] = None,
    ) -> None:
        """Consume events until stopped, disconnected or timed out.

        Args:
            events: Channel of filesystem events; None means disconnected
            stop_event: When set, pending changes are flushed and the loop exits
            timeout: Session timeout in seconds (defaults to config)
        """
        loop = asyncio.get_running_loop()
        timeout = timeout if timeout is not None else self.config.session_timeout_seconds
        deadline = loop.time() + timeout if timeout is not None else None
        logger.info(f"Watching {self.root} for changes")

        while True:
            if stop_event is not None and stop_event.is_set():
                if self.tracker.has_changes():
                    logger.info(f"Flushing {self.tracker.change_count()} pending changes before shutdown")
                    await self._reindex_pending()
                logger.info("Watch stopped")
                break

            if deadline is not None and loop.time() >= deadline:
                logger.info("Watch session timed out")
                break

            try:
                event = await self._next_event(events)
            except DebounceChannelDisconnect as e:
                logger.info(f"{e}; stopping watch")
                break

            if event is not None:
                self.record_change(event)

            try:
                await self.process_pending()
            except Exception as e:
                self._failures += 1
                logger.error(f"Watch cycle failed: {e}")

    def status(self) -> Dict[str, Any]:
        last = self._last_report
        return {
            "state": self._state.value,
            "root": str(self.root),
            "pending_changes": self.tracker.change_count(),
            "cycles": self._cycles,
            "failures": self._failures,
            "ignored_events": self._ignored_events,
            "debounce": self.tracker.stats(),
            "last_report": None
            if last is None
            else {
                "changed": last.changed,
                "skipped": last.skipped,
                "reindexed": last.reindexed,
                "deleted": last.deleted,
                "full_reindex": last.full_reindex,
                "error": last.error,
            },
        }


class ChangeEventHandler(FileSystemEventHandler):
    """Forwards watchdog events onto an asyncio queue.

    Watchdog calls the handler from its observer thread, so events are
    handed to the loop with call_soon_threadsafe.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        queue: "asyncio.Queue[Optional[FileChangeEvent]]",
    ):
        super().__init__()
        self._loop = loop
        self._queue = queue

    def _emit(self, path: Union[str, bytes], kind: ChangeKind) -> None:
        event = FileChangeEvent(path=Path(os.fsdecode(path)), kind=kind)
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropped event for {event.path}: event loop closed")

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.CREATE)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.MODIFY)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.DELETE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.DELETE)
            self._emit(event.dest_path, ChangeKind.CREATE)


class FileSystemWatcher:
    """Watchdog observer feeding a WatchEngine event channel."""

    def __init__(
        self,
        root: Union[str, Path],
        queue: "asyncio.Queue[Optional[FileChangeEvent]]",
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.root = Path(root).resolve()
        self.queue = queue
        self._loop = loop
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        observer = Observer()
        observer.schedule(ChangeEventHandler(loop, self.queue), str(self.root), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"File watcher started for {self.root}")

    def stop(self, close_channel: bool = True) -> None:
        """Stop the observer; optionally send the disconnect sentinel."""
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        if close_channel and self._loop is not None:
            try:
                self._loop.call_soon_threadsafe(self.queue.put_nowait, None)
            except RuntimeError:
                logger.debug("Event loop closed before the watcher channel was closed")
        logger.info("File watcher stopped")


async def watch_repository(
    root: Union[str, Path],
    config: "IndexerConfig",
    pipeline: Optional["VectorPipeline"] = None,
    stop_event: Optional[asyncio.Event] = None,
) -> WatchEngine:
    """Watch a repository and keep its index current until stopped.

    Builds the pipeline from config when none is given.

    Returns:
        The engine, for its final status()
    """
    if pipeline is None:
        from codeindex.pipeline import VectorPipeline

        pipeline = await VectorPipeline.from_config(config, root)

    engine = WatchEngine.from_config(config, root, pipeline)
    queue: "asyncio.Queue[Optional[FileChangeEvent]]" = asyncio.Queue()
    watcher = FileSystemWatcher(engine.root, queue)
    watcher.start()
    try:
        await engine.run(queue, stop_event=stop_event)
    finally:
        watcher.stop(close_channel=False)
    return engine
