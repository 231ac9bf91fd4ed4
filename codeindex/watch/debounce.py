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

"""Coalescing of filesystem events within a debounce window."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from codeindex.models import ChangeKind, FileChangeEvent

logger = logging.getLogger(__name__)


class DebounceBuffer:
    """Last-write-wins event buffer keyed by path.

    The window starts when the first event lands in an empty buffer and
    is ready once it has been open for ``window_seconds``. Safe to feed
    from a watcher thread while the watch loop polls it.
    """

    def __init__(self, window_seconds: float = 1.0, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._events: Dict[Path, FileChangeEvent] = {}
        self._window_start: Optional[float] = None
        self._total_events = 0
        self._windows_flushed = 0

    def collect_event(self, event: FileChangeEvent) -> None:
        with self._lock:
            if not self._events:
                self._window_start = self._clock()
            self._events[Path(event.path)] = event
            self._total_events += 1

    def is_ready(self) -> bool:
        with self._lock:
            if not self._events or self._window_start is None:
                return False
            return self._clock() - self._window_start >= self.window_seconds

    def is_empty(self) -> bool:
        with self._lock:
            return not self._events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def take_events(self) -> List[FileChangeEvent]:
        """Drain the buffer and reset the window. Returns one event per path."""
        with self._lock:
            events = list(self._events.values())
            self._events = {}
            self._window_start = None
            if events:
                self._windows_flushed += 1
            return events

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_events": self._total_events,
                "unique_paths": len(self._events),
                "windows_flushed": self._windows_flushed,
            }


class ChangeTracker:
    """Path-oriented view over a DebounceBuffer."""

    def __init__(self, buffer: Optional[DebounceBuffer] = None):
        self.buffer = buffer or DebounceBuffer()

    def record_change(
        self, path: Union[str, Path], kind: ChangeKind = ChangeKind.MODIFY
    ) -> None:
        self.buffer.collect_event(FileChangeEvent(path=Path(path), kind=kind))

    def record_event(self, event: FileChangeEvent) -> None:
        self.buffer.collect_event(event)

    def has_changes(self) -> bool:
        return not self.buffer.is_empty()

    def change_count(self) -> int:
        return len(self.buffer)

    def is_ready(self) -> bool:
        return self.buffer.is_ready()

    def take_events(self) -> List[FileChangeEvent]:
        return self.buffer.take_events()

    def take_changes(self) -> List[Path]:
        return [event.path for event in self.buffer.take_events()]

    def stats(self) -> Dict[str, int]:
        return self.buffer.stats()
