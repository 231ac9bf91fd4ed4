# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
# SPDX-License-Identifier: Apache-2.0

"""Debounced filesystem watching and incremental reindexing."""

from codeindex.watch.debounce import ChangeTracker, DebounceBuffer
from codeindex.watch.engine import (
    ChangeEventHandler,
    FileSystemWatcher,
    ReindexReport,
    WatchEngine,
    WatchState,
    watch_repository,
)

__all__ = [
    "ChangeTracker",
    "DebounceBuffer",
    "ChangeEventHandler",
    "FileSystemWatcher",
    "ReindexReport",
    "WatchEngine",
    "WatchState",
    "watch_repository",
]
