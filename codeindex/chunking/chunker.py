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

"""AST-aware code chunking.

Files are split at semantic boundaries (functions, classes, methods)
instead of arbitrary text windows, which gives better embeddings for
code search.

Usage:
    >>> chunker = SemanticChunker(ChunkingConfig())
    >>> async for result in chunker.chunk_stream(Path("repo")):
    ...     if result.ok:
    ...         print(result.chunk.file_path, result.chunk.start_line, result.chunk.end_line)
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Iterable, List, Optional, Union

from codeindex.chunking.boundaries import BoundaryKinds
from codeindex.chunking.tree_sitter_manager import ParserPool
from codeindex.errors import ParseFailure, UnsupportedLanguage
from codeindex.ignore_patterns import iter_source_files, relative_to_root
from codeindex.languages import LanguageDetector, get_language_detector
from codeindex.models import Chunk, ChunkResult, compute_checksum, estimate_token_count

if TYPE_CHECKING:
    from tree_sitter import Node, Tree

    from codeindex.config import ChunkingConfig

logger = logging.getLogger(__name__)

WHOLE_FILE_KIND = "file"

# Bytes inspected for NUL when sniffing binary content
BINARY_SNIFF_BYTES = 8192


class ChunkIdSequence:
    """Monotonic chunk id counter scoped to one ingestion run."""

    def __init__(self, start: int = 1):
        self._next = start
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
            return value

    @property
    def issued(self) -> int:
        """How many ids have been handed out."""
        return self._next - 1


@dataclass(frozen=True)
class SemanticUnit:
    """A span of a file selected as one chunk, before ids are assigned."""

    text: str
    start_line: int
    end_line: int
    kind: str
    symbol_name: Optional[str] = None
    start_column: int = 0


def _line_count(text: str) -> int:
    if not text:
        return 1
    count = text.count("\n")
    return count if text.endswith("\n") else count + 1


def _whole_file_unit(text: str) -> SemanticUnit:
    return SemanticUnit(text=text, start_line=1, end_line=_line_count(text), kind=WHOLE_FILE_KIND)


def _symbol_name(node: "Node") -> Optional[str]:
    name = node.child_by_field_name("name")
    if name is None:
        # decorated_definition and export wrappers keep the name one level down
        inner = node.child_by_field_name("definition") or node.child_by_field_name("declaration")
        if inner is not None:
            name = inner.child_by_field_name("name")
    if name is None or name.text is None:
        return None
    return name.text.decode("utf-8", errors="replace")


class SemanticChunker:
    """Turns repository files into a stream of chunks.

    Each boundary node found by a pre-order walk becomes one chunk and the
    walk does not descend into it, so nested functions belong to their
    enclosing unit and no two chunks overlap. Files whose language has no
    boundary kinds, or whose tree has no boundary nodes, become a single
    whole-file chunk.
    """

    def __init__(
        self,
        config: Optional["ChunkingConfig"] = None,
        parser_pool: Optional[ParserPool] = None,
        detector: Optional[LanguageDetector] = None,
        boundary_kinds: Optional[BoundaryKinds] = None,
    ):
        """Initialize the chunker.

        Args:
            config: Chunking settings. Defaults to ChunkingConfig().
            parser_pool: Grammar/parser cache. A private pool is created if None.
            detector: Language detector. Defaults to the shared detector.
            boundary_kinds: Boundary table. If None, the built-in table merged
                            with config overrides is validated against the
                            installed grammars.
        """
        if config is None:
            from codeindex.config import ChunkingConfig

            config = ChunkingConfig()
        self.config = config
        self.parser_pool = parser_pool or ParserPool()
        self.detector = detector or get_language_detector()
        if boundary_kinds is None:
            boundary_kinds = BoundaryKinds().merged(config.boundary_kinds).validated(self.parser_pool)
        self.boundary_kinds = boundary_kinds
        self.max_file_bytes = int(config.max_file_size_mb * 1024 * 1024)

    def collect_semantic_units(
        self, language: str, tree: Optional["Tree"], source: bytes
    ) -> List[SemanticUnit]:
        """Select the boundary nodes of a parsed file.

        Args:
            language: Language name used to look up boundary kinds
            tree: Parsed syntax tree (None for languages without a grammar)
            source: The bytes the tree was parsed from

        Returns:
            Units in source order; a single whole-file unit when nothing matches
        """
        kinds = set(self.boundary_kinds.kinds_for(language))
        if tree is None or not kinds:
            return [_whole_file_unit(source.decode("utf-8"))]

        units: List[SemanticUnit] = []
        stack = [tree.root_node]
        while stack:
            node = stack.pop()
            if node.type in kinds:
                text = source[node.start_byte : node.end_byte].decode("utf-8")
                start_line = node.start_point[0] + 1
                end_line = max(start_line, start_line + text.rstrip("\n").count("\n"))
                units.append(
                    SemanticUnit(
                        text=text,
                        start_line=start_line,
                        end_line=end_line,
                        kind=node.type,
                        symbol_name=_symbol_name(node),
                        start_column=node.start_point[1],
                    )
                )
                continue
            stack.extend(reversed(node.children))

        if not units:
            return [_whole_file_unit(source.decode("utf-8"))]
        return units

    def _split_large_unit(self, unit: SemanticUnit) -> List[SemanticUnit]:
        """Split a unit longer than max_chunk_chars at line boundaries.

        A single line longer than the limit stays whole.
        """
        limit = self.config.max_chunk_chars
        if len(unit.text) <= limit:
            return [unit]

        parts: List[SemanticUnit] = []
        current: List[str] = []
        current_start = unit.start_line
        current_len = 0

        for offset, line in enumerate(unit.text.split("\n")):
            line_len = len(line) + 1  # +1 for newline
            if current_len + line_len > limit and current:
                parts.append(
                    SemanticUnit(
                        text="\n".join(current),
                        start_line=current_start,
                        end_line=current_start + len(current) - 1,
                        kind=f"{unit.kind}_part",
                        symbol_name=unit.symbol_name,
                        start_column=unit.start_column if current_start == unit.start_line else 0,
                    )
                )
                current = []
                current_start = unit.start_line + offset
                current_len = 0
            current.append(line)
            current_len += line_len

        # A trailing newline leaves an empty last line that belongs to no part
        while current and not current[-1]:
            current.pop()
        if current:
            parts.append(
                SemanticUnit(
                    text="\n".join(current),
                    start_line=current_start,
                    end_line=current_start + len(current) - 1,
                    kind=f"{unit.kind}_part",
                    symbol_name=unit.symbol_name,
                    start_column=unit.start_column if current_start == unit.start_line else 0,
                )
            )

        if len(parts) == 1:
            return [unit]
        return parts

    def _read_source(self, path: Path) -> bytes:
        try:
            size = path.stat().st_size
            if size > self.max_file_bytes:
                raise ParseFailure(
                    path,
                    f"file too large ({size} bytes > {self.max_file_bytes} bytes)",
                    permanent=True,
                )
            data = path.read_bytes()
        except OSError as e:
            raise ParseFailure(path, f"unreadable: {e}") from e

        if b"\x00" in data[:BINARY_SNIFF_BYTES]:
            raise ParseFailure(path, "binary content", permanent=True)
        return data

    def chunk_file(self, path: Union[str, Path], root: Path, ids: ChunkIdSequence) -> List[Chunk]:
        """Chunk one file.

        Args:
            path: File path, absolute or relative to root
            root: Repository root; chunk file paths are relative to it
            ids: Run-scoped id sequence

        Returns:
            Chunks in source order (empty for blank files)

        Raises:
            ParseFailure: If the file is oversized, binary, not UTF-8,
                          unreadable, or cannot be parsed
        """
        root = Path(root)
        relative = relative_to_root(path, root)
        if relative is None:
            raise ParseFailure(path, f"outside repository root {root}")
        absolute = root / relative

        data = self._read_source(absolute)
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseFailure(
                absolute, f"invalid UTF-8 at byte {e.start}", permanent=True
            ) from e

        if not text.strip():
            logger.debug(f"Skipping blank file {relative}")
            return []

        language = self.detector.detect(relative, text)
        tree = None
        if self.boundary_kinds.kinds_for(language):
            try:
                tree = self.parser_pool.parse(language, data)
            except UnsupportedLanguage as e:
                logger.debug(f"{e}; chunking {relative} as one unit")
            except Exception as e:
                raise ParseFailure(absolute, f"parse error: {e}") from e
            else:
                if tree is None:
                    raise ParseFailure(absolute, "parser returned no tree")

        units: List[SemanticUnit] = []
        for unit in self.collect_semantic_units(language, tree, data):
            units.extend(self._split_large_unit(unit))

        file_path = relative.as_posix()
        return [
            Chunk(
                id=ids.next_id(),
                file_path=file_path,
                language=language,
                text=unit.text,
                start_line=unit.start_line,
                end_line=unit.end_line,
                token_count=estimate_token_count(unit.text),
                checksum=compute_checksum(unit.text),
                repository_id=self.config.repository_id,
                kind=unit.kind,
                symbol_name=unit.symbol_name,
                start_column=unit.start_column,
            )
            for unit in units
        ]

    def iter_files(self, root: Path) -> Iterable[Path]:
        """Files a full repository scan visits."""
        return iter_source_files(root, self.config.extra_skip_dirs)

    async def chunk_stream(
        self, root: Union[str, Path], paths: Optional[Iterable[Union[str, Path]]] = None
    ) -> AsyncIterator[ChunkResult]:
        """Lazily chunk a repository, or just the given files.

        Every call numbers its chunks from 1. Per-file failures are yielded
        as error results and the scan moves on to the next file.

        Args:
            root: Repository root
            paths: Files to chunk (absolute or root-relative). None scans root.
        """
        root = Path(root)
        ids = ChunkIdSequence()
        files = self.iter_files(root) if paths is None else paths
        file_count = 0

        for path in files:
            file_count += 1
            try:
                chunks = await asyncio.to_thread(self.chunk_file, path, root, ids)
            except ParseFailure as e:
                logger.debug(f"Skipping file: {e}")
                yield ChunkResult(error=e)
                continue

            for chunk in chunks:
                yield ChunkResult(chunk=chunk)

        logger.debug(f"Chunked {file_count} files under {root} into {ids.issued} chunks")
