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

"""Core data types shared by the chunker, pipeline and watch engine.

Chunks are produced once and never mutated. Only derived artifacts
(vectors, payloads, n-gram sketches, fingerprints) are persisted.
"""

from __future__ import annotations

import hashlib
import re
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

# Identifier runs, numbers and single punctuation characters
_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+|[^\sA-Za-z0-9_]")


def compute_checksum(text: str) -> str:
    """Content checksum used to detect identical chunks across runs."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def estimate_token_count(text: str) -> int:
    """Rough token count: identifiers, numbers and punctuation marks."""
    return len(_TOKEN_RE.findall(text))


@dataclass(frozen=True)
class Chunk:
    """A unit of source text selected for indexing.

    Attributes:
        id: Run-scoped sequence number, unique and increasing within one run
        file_path: Repository-relative path with POSIX separators
        language: Language tag from the detector
        text: Raw chunk text (never persisted)
        start_line: First line, 1-indexed
        end_line: Last line, 1-indexed, inclusive
        token_count: Approximate token count of text
        checksum: Content checksum of text
        repository_id: Optional repository identifier
        kind: Boundary node kind, or "file" for whole-file chunks
        symbol_name: Name of the construct when the grammar exposes one
        start_column: Column of the first character on start_line, 0-indexed
    """

    id: int
    file_path: str
    language: str
    text: str
    start_line: int
    end_line: int
    token_count: int
    checksum: str
    repository_id: Optional[int] = None
    kind: str = "file"
    symbol_name: Optional[str] = None
    start_column: int = 0

    def metadata(self) -> "ChunkMetadata":
        return ChunkMetadata(
            chunk_id=self.id,
            file_path=self.file_path,
            language=self.language,
            start_line=self.start_line,
            end_line=self.end_line,
            token_count=self.token_count,
            checksum=self.checksum,
            repository_id=self.repository_id,
            kind=self.kind,
            symbol_name=self.symbol_name,
        )


@dataclass(frozen=True)
class ChunkMetadata:
    """Indexing payload stored next to each vector (no raw text)."""

    chunk_id: int
    file_path: str
    language: str
    start_line: int
    end_line: int
    token_count: int
    checksum: str
    repository_id: Optional[int] = None
    kind: str = "file"
    symbol_name: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        # Vector stores reject None metadata values
        return {key: value for key, value in asdict(self).items() if value is not None}


def point_id(chunk: Chunk) -> int:
    """Stable point identity for a chunk.

    Chunk ids restart at 1 every run, so they cannot identify a point
    across runs. The point id hashes where the construct lives instead,
    which makes re-ingesting the same construct overwrite its old point.
    Start column and symbol name keep apart constructs that share a line
    span, such as two one-line functions. Fits in a signed 64-bit integer.
    """
    key = (
        f"{chunk.repository_id or 0}:{chunk.file_path}:"
        f"{chunk.start_line}:{chunk.start_column}:{chunk.end_line}:"
        f"{chunk.kind}:{chunk.symbol_name or ''}"
    )

    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & 0x7FFFFFFFFFFFFFFF


@dataclass
class Point:
    """A vector index entry."""

    id: int
    vector: List[float]
    payload: ChunkMetadata

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float]) -> "Point":
        return cls(id=point_id(chunk), vector=vector, payload=chunk.metadata())


@dataclass
class ChunkResult:
    """One item of a chunk stream: either a chunk or a per-file error."""

    chunk: Optional[Chunk] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.chunk is not None


class ChangeKind(str, Enum):
    """Filesystem change kinds reported by the watcher."""

    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


@dataclass
class FileChangeEvent:
    """A single filesystem notification."""

    path: Path
    kind: ChangeKind = ChangeKind.MODIFY
    timestamp: float = field(default_factory=time.time)
