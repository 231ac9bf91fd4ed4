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

"""File fingerprints and metadata gating for incremental indexing.

Before a changed file is reindexed its current fingerprint is compared
with the one recorded after the last successful index:

- mtime and size unchanged: skipped without reading the file
- mtime or size changed but identical content hash: skipped (touched only)
- anything else, including new, deleted and unreadable files: reindexed

The fingerprint table is persisted as JSON next to the index state and is
owned by MetadataStore. Reads may run concurrently with a batch update;
writes are serialized by a re-entrant lock.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from codeindex.errors import MetadataIoFailure

logger = logging.getLogger(__name__)

METADATA_VERSION = 1
_HASH_BLOCK_SIZE = 1 << 16


class FileFingerprint(BaseModel):
    """Recorded state of one indexed file."""

    path: str = Field(description="Store key: root-relative POSIX path, or absolute")
    mtime: float = Field(description="Modification time, seconds since epoch")
    size: int = Field(description="Size in bytes")
    content_hash: str = Field(description="SHA-256 of the file content")
    indexed_at: float = Field(default_factory=time.time, description="When it was recorded")


def hash_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(_HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def compute_fingerprint(path: Union[str, Path], key: Optional[str] = None) -> FileFingerprint:
    """Fingerprint a file as it is on disk now.

    Raises:
        OSError: If the file is missing or unreadable
    """
    path = Path(path)
    stat = path.stat()
    return FileFingerprint(
        path=key or str(path),
        mtime=stat.st_mtime,
        size=stat.st_size,
        content_hash=hash_file(path),
    )


class ChangeReason(str, Enum):
    """Why a path was selected for reindexing."""

    NEW = "new"
    MTIME = "mtime"
    SIZE = "size"
    MTIME_AND_SIZE = "mtime_and_size"
    DELETED = "deleted"
    UNREADABLE = "unreadable"

    @property
    def description(self) -> str:
        return _REASON_DESCRIPTIONS[self]


_REASON_DESCRIPTIONS = {
    ChangeReason.NEW: "not indexed before",
    ChangeReason.MTIME: "mtime changed",
    ChangeReason.SIZE: "size changed",
    ChangeReason.MTIME_AND_SIZE: "mtime and size changed",
    ChangeReason.DELETED: "file deleted",
    ChangeReason.UNREADABLE: "metadata unreadable",
}

SKIP_UNCHANGED = "unchanged metadata"
SKIP_SAME_CONTENT = "touched, content unchanged"


class MetadataStore:
    """Persistent path → FileFingerprint table.

    Keys are POSIX paths relative to ``root`` when a root is given and the
    path lies under it, so the table survives moving the repository.
    """

    def __init__(self, storage_path: Union[str, Path], root: Optional[Union[str, Path]] = None):
        self.storage_path = Path(storage_path)
        self.root = Path(root).resolve() if root is not None else None
        self._entries: Dict[str, FileFingerprint] = {}
        self._lock = threading.RLock()

    def key_for(self, path: Union[str, Path]) -> str:
        path = Path(path)
        if self.root is not None:
            candidate = path if path.is_absolute() else self.root / path
            try:
                return candidate.resolve().relative_to(self.root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def load(self) -> int:
        """Load the table from disk, replacing in-memory entries.

        A missing or corrupt file yields an empty table; the problem is
        logged and the next persist() overwrites it.

        Returns:
            Number of entries loaded
        """
        try:
            entries = self._read()
        except MetadataIoFailure as e:
            logger.warning(f"{e}; starting with empty metadata")
            entries = {}

        with self._lock:
            self._entries = entries
        logger.debug(f"Loaded {len(entries)} fingerprints from {self.storage_path}")
        return len(entries)

    def _read(self) -> Dict[str, FileFingerprint]:
        if not self.storage_path.exists():
            return {}
        try:
            raw = json.loads(self.storage_path.read_text(encoding="utf-8"))
            records = raw.get("entries", {}) if isinstance(raw, dict) else {}
            return {key: FileFingerprint.model_validate(value) for key, value in records.items()}
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            raise MetadataIoFailure(f"Cannot read metadata file {self.storage_path}: {e}") from e

    def persist(self) -> None:
        """Atomically write the table to disk.

        Raises:
            MetadataIoFailure: If the file cannot be written
        """
        with self._lock:
            payload = {
                "version": METADATA_VERSION,
                "entries": {key: entry.model_dump() for key, entry in self._entries.items()},
            }
            try:
                self.storage_path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.storage_path.parent, prefix=".metadata-", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        json.dump(payload, f, indent=2)
                    os.replace(tmp_name, self.storage_path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as e:
                raise MetadataIoFailure(
                    f"Cannot write metadata file {self.storage_path}: {e}"
                ) from e

    def get(self, path: Union[str, Path]) -> Optional[FileFingerprint]:
        with self._lock:
            return self._entries.get(self.key_for(path))

    def put(self, fingerprint: FileFingerprint) -> None:
        with self._lock:
            self._entries[fingerprint.path] = fingerprint

    def remove(self, path: Union[str, Path]) -> Optional[FileFingerprint]:
        with self._lock:
            return self._entries.pop(self.key_for(path), None)

    def entries(self) -> List[FileFingerprint]:
        with self._lock:
            return list(self._entries.values())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, object]:
        with self._lock:
            return {
                "entry_count": len(self._entries),
                "total_file_size": sum(entry.size for entry in self._entries.values()),
                "storage_path": str(self.storage_path),
            }


@dataclass
class FilterResult:
    """Partition of the input paths into reindex and skipped.

    ``snapshots`` holds, by store key, the fingerprint of each file to
    reindex as it was when gated, before the pipeline read it.
    """

    files_to_reindex: List[Path] = field(default_factory=list)
    skipped_files: List[Tuple[Path, str]] = field(default_factory=list)
    reasons: Dict[Path, ChangeReason] = field(default_factory=dict)
    snapshots: Dict[str, FileFingerprint] = field(default_factory=dict)

    @property
    def reindex_count(self) -> int:
        return len(self.files_to_reindex)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped_files)

    @property
    def total_count(self) -> int:
        return self.reindex_count + self.skipped_count

    @property
    def deleted_files(self) -> List[Path]:
        return [path for path in self.files_to_reindex if self.reasons.get(path) == ChangeReason.DELETED]


class FileChangeFilter:
    """Decides which changed files actually need reindexing."""

    def __init__(self, store: MetadataStore):
        self.store = store

    def resolve(self, path: Union[str, Path]) -> Path:
        """Anchor a relative path at the store root rather than the cwd."""
        path = Path(path)
        if not path.is_absolute() and self.store.root is not None:
            return self.store.root / path
        return path

    def check(self, path: Union[str, Path]) -> Tuple[Optional[ChangeReason], str]:
        """Compare a file against its stored fingerprint.

        Returns:
            (reason, skip_reason): reason is None when the file can be skipped
        """
        path = self.resolve(path)
        stored = self.store.get(path)
        try:
            stat = path.stat()
        except FileNotFoundError:
            return ChangeReason.DELETED, ""
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}, reindexing anyway")
            return ChangeReason.UNREADABLE, ""

        if stored is None:
            return ChangeReason.NEW, ""

        mtime_changed = stat.st_mtime != stored.mtime
        size_changed = stat.st_size != stored.size
        if not mtime_changed and not size_changed:
            return None, SKIP_UNCHANGED

        if not size_changed:
            try:
                if hash_file(path) == stored.content_hash:
                    return None, SKIP_SAME_CONTENT
            except OSError as e:
                logger.debug(f"Cannot hash {path}: {e}, reindexing anyway")
                return ChangeReason.UNREADABLE, ""

        if mtime_changed and size_changed:
            return ChangeReason.MTIME_AND_SIZE, ""
        return (ChangeReason.MTIME if mtime_changed else ChangeReason.SIZE), ""

    def filter_changes(self, changed_paths: Iterable[Union[str, Path]]) -> FilterResult:
        """Partition paths into those to reindex and those to skip.

        Read-only: the store is not modified. Relative paths are taken
        against the store root. Each distinct path appears in exactly one
        of the two lists; every surviving file except deleted ones is
        fingerprinted here, so a save that lands while it is being
        reindexed still differs from what gets recorded.
        """
        result = FilterResult()
        seen = set()
        for raw_path in changed_paths:
            path = self.resolve(raw_path)
            if path in seen:
                continue
            seen.add(path)

            reason, skip_reason = self.check(path)
            if reason is None:
                result.skipped_files.append((path, skip_reason))
                continue

            result.files_to_reindex.append(path)
            result.reasons[path] = reason
            if reason != ChangeReason.DELETED:
                key = self.store.key_for(path)
                try:
                    result.snapshots[key] = compute_fingerprint(path, key=key)
                except OSError as e:
                    logger.debug(f"Cannot fingerprint {path} before reindex: {e}")

        logger.debug(
            f"Metadata gating: {result.reindex_count} to reindex, {result.skipped_count} skipped"
        )
        return result

    def update_metadata_batch(
        self,
        paths: Iterable[Union[str, Path]],
        snapshots: Optional[Dict[str, FileFingerprint]] = None,
    ) -> Tuple[int, int]:
        """Record fingerprints for successfully reindexed paths.

        A path with an entry in ``snapshots`` (keyed by store key) records
        that snapshot; any other path is fingerprinted as it is now.

        Returns:
            (success_count, error_count). A file that vanished mid-batch is
            an error for that path only. If the table cannot be written, every
            path counts as an error.
        """
        snapshots = snapshots or {}
        success_count = 0
        error_count = 0
        for raw_path in paths:
            path = self.resolve(raw_path)
            key = self.store.key_for(path)
            try:
                fingerprint = snapshots.get(key) or compute_fingerprint(path, key=key)
            except OSError as e:
                error_count += 1
                logger.debug(f"Failed to update metadata for {path}: {e}")
                continue
            self.store.put(fingerprint)
            success_count += 1

        if success_count == 0:
            return success_count, error_count

        try:
            self.store.persist()
        except MetadataIoFailure as e:
            logger.error(str(e))
            return 0, success_count + error_count
        return success_count, error_count

    def forget(self, paths: Iterable[Union[str, Path]]) -> int:
        """Drop fingerprints for deleted files and persist. Returns entries removed."""
        removed = sum(1 for path in paths if self.store.remove(path) is not None)
        if removed:
            try:
                self.store.persist()
            except MetadataIoFailure as e:
                logger.error(str(e))
        return removed
