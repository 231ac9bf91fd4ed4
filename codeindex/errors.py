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

"""Error taxonomy for the indexing core.

Scope of each error:
- ParseFailure: one file, recovered by the chunker, scan continues
- UnsupportedLanguage: no grammar, the chunker falls back to a whole-file chunk
- EmbeddingFailure: one batch, propagated to the ingestion caller
- DimensionMismatch: raised before any store I/O, also blocks model switches
- IndexUpsertFailure: one batch, propagated to the ingestion caller
- MetadataIoFailure: never fatal, callers treat it as empty prior state
- DebounceChannelDisconnect: ends the watch loop gracefully
- ReindexFailure: one watch cycle, logged and the loop continues
"""

from pathlib import Path
from typing import Optional, Union


class CodeIndexError(Exception):
    """Base class for all indexing errors."""


class ParseFailure(CodeIndexError):
    """A single file could not be read or parsed.

    ``permanent`` marks failures decided by the content itself (binary,
    oversized, not UTF-8): retrying the same bytes gives the same result.
    """

    def __init__(self, file_path: Union[str, Path], reason: str, permanent: bool = False):
        self.file_path = str(file_path)
        self.reason = reason
        self.permanent = permanent
        super().__init__(f"{self.file_path}: {reason}")



class UnsupportedLanguage(CodeIndexError):
    """No tree-sitter grammar is registered or installed for a language."""

    def __init__(self, language: str, detail: Optional[str] = None):
        self.language = language
        message = f"Unsupported language for tree-sitter: {language}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class EmbeddingFailure(CodeIndexError):
    """An embedding batch failed as a whole (backend error or timeout)."""


class DimensionMismatch(CodeIndexError):
    """Vector length disagrees with the model or the index dimension."""

    def __init__(self, expected: int, actual: int, context: str = ""):
        self.expected = expected
        self.actual = actual
        message = f"Dimension mismatch: expected {expected}, got {actual}"
        if context:
            message = f"{message} ({context})"
        super().__init__(message)


class IndexUpsertFailure(CodeIndexError):
    """The vector store rejected or timed out on an upsert batch."""


class MetadataIoFailure(CodeIndexError):
    """The fingerprint table could not be read or written."""


class DebounceChannelDisconnect(CodeIndexError):
    """The filesystem event channel was closed."""


class ReindexFailure(CodeIndexError):
    """One watch-driven reindex cycle failed."""
