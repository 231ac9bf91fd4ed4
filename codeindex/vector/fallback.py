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

"""Lexical fallback artifacts.

These sketches are built for every chunk, independent of any embedding
model, so a degraded lexical/fuzzy search path stays available when the
embedding backend is down or a batch fails:

- NGramVector: L2-normalized character trigram and quadgram counts
- IdentifierProfile: split identifier tokens (snake_case and camelCase)
- PmiGraph: token co-occurrence counts for later query expansion

Artifacts are keyed by the chunk's stable point id so they line up with
the vector index across runs.
"""

from __future__ import annotations

import json
import logging
import math
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from codeindex.models import Chunk

logger = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_CAMEL_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")

# Caps pairwise co-occurrence updates per chunk
MAX_PMI_TOKENS = 64

PMI_FILE = "pmi_graph.json"
NGRAMS_FILE = "ngrams.json"
IDENTIFIERS_FILE = "identifiers.json"


def identifier_tokens(text: str) -> List[str]:
    """Split identifiers into lowercase word tokens, first occurrence order.

    >>> identifier_tokens("def parseHTTPRequest(raw_bytes):")
    ['def', 'parse', 'http', 'request', 'raw', 'bytes']
    """
    seen: Dict[str, None] = {}
    for identifier in _IDENTIFIER_RE.findall(text):
        for part in identifier.split("_"):
            for word in _CAMEL_RE.findall(part):
                token = word.lower()
                if len(token) > 1 and token not in seen:
                    seen[token] = None
    return list(seen)


def _normalize(counts: Counter) -> Dict[str, float]:
    norm = math.sqrt(sum(value * value for value in counts.values()))
    if norm == 0.0:
        return {}
    return {key: value / norm for key, value in counts.items()}


def _dot(a: Dict[str, float], b: Dict[str, float]) -> float:
    if len(a) > len(b):
        a, b = b, a
    return sum(value * b[key] for key, value in a.items() if key in b)


@dataclass
class NGramVector:
    """Character n-gram sketch of a text."""

    trigrams: Dict[str, float] = field(default_factory=dict)
    quadgrams: Dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_text(cls, text: str) -> "NGramVector":
        trigrams: Counter = Counter(text[i : i + 3] for i in range(len(text) - 2))
        quadgrams: Counter = Counter(text[i : i + 4] for i in range(len(text) - 3))
        return cls(trigrams=_normalize(trigrams), quadgrams=_normalize(quadgrams))

    def cosine_similarity(self, other: "NGramVector") -> float:
        """Sum of trigram and quadgram cosine similarities (0.0 to 2.0)."""
        return _dot(self.trigrams, other.trigrams) + _dot(self.quadgrams, other.quadgrams)

    def is_empty(self) -> bool:
        return not self.trigrams and not self.quadgrams

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"trigrams": self.trigrams, "quadgrams": self.quadgrams}

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, float]]) -> "NGramVector":
        return cls(trigrams=dict(data.get("trigrams", {})), quadgrams=dict(data.get("quadgrams", {})))


@dataclass(frozen=True)
class IdentifierProfile:
    """Identifier tokens of one chunk."""

    tokens: Tuple[str, ...] = ()

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "IdentifierProfile":
        return cls(tokens=tuple(identifier_tokens(chunk.text)))

    def score_overlap(self, query_terms: Iterable[str]) -> float:
        """Fraction of distinct query terms present in this profile."""
        query = set(query_terms)
        if not query or not self.tokens:
            return 0.0
        return len(query.intersection(self.tokens)) / len(query)


class PmiGraph:
    """Token marginals and ordered pair co-occurrence counts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.marginals: Counter = Counter()
        self.cooccurrences: Counter = Counter()

    def update(self, tokens: List[str]) -> None:
        tokens = tokens[:MAX_PMI_TOKENS]
        with self._lock:
            for i, first in enumerate(tokens):
                self.marginals[first] += 1
                for second in tokens[i + 1 :]:
                    self.cooccurrences[(first, second)] += 1

    def marginal(self, token: str) -> int:
        return self.marginals.get(token, 0)

    def cooccurrence(self, first: str, second: str) -> int:
        return self.cooccurrences.get((first, second), 0)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "marginals": dict(self.marginals),
                "edges": [
                    {"term": term, "neighbor": neighbor, "count": count}
                    for (term, neighbor), count in self.cooccurrences.items()
                ],
            }

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, object]) -> "PmiGraph":
        graph = cls()
        graph.marginals.update(snapshot.get("marginals", {}))
        for edge in snapshot.get("edges", []):
            graph.cooccurrences[(edge["term"], edge["neighbor"])] = edge["count"]
        return graph


class FallbackArtifacts:
    """Lexical sketches for every indexed chunk. Thread-safe."""

    def __init__(self, pmi: Optional[PmiGraph] = None):
        self.pmi = pmi or PmiGraph()
        self._lock = threading.Lock()
        self._ngrams: Dict[int, NGramVector] = {}
        self._identifiers: Dict[int, IdentifierProfile] = {}
        self._files: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._ngrams)

    def record_chunk(self, key: int, chunk: Chunk, ngram: NGramVector) -> None:
        """Store the sketches for one chunk, replacing any previous entry."""
        profile = IdentifierProfile.from_chunk(chunk)
        self.pmi.update(list(profile.tokens))
        with self._lock:
            self._ngrams[key] = ngram
            self._identifiers[key] = profile
            self._files[key] = chunk.file_path

    def ngram(self, key: int) -> Optional[NGramVector]:
        with self._lock:
            return self._ngrams.get(key)

    def identifier(self, key: int) -> Optional[IdentifierProfile]:
        with self._lock:
            return self._identifiers.get(key)

    def keys_for_file(self, file_path: str) -> List[int]:
        with self._lock:
            return [key for key, path in self._files.items() if path == file_path]

    def forget(self, keys: Iterable[int]) -> int:
        """Drop entries; PMI counts are cumulative and are kept."""
        removed = 0
        with self._lock:
            for key in keys:
                if self._ngrams.pop(key, None) is not None:
                    removed += 1
                self._identifiers.pop(key, None)
                self._files.pop(key, None)
        return removed

    def forget_file(self, file_path: str) -> int:
        return self.forget(self.keys_for_file(file_path))

    def persist(self, directory: Union[str, Path]) -> None:
        """Write the artifacts as JSON files under directory."""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)

        with self._lock:
            ngram_records = [
                {"chunk_key": key, "file_path": self._files.get(key), "vector": vector.to_dict()}
                for key, vector in self._ngrams.items()
            ]
            identifier_records = [
                {"chunk_key": key, "tokens": list(profile.tokens)}
                for key, profile in self._identifiers.items()
            ]

        (directory / PMI_FILE).write_text(json.dumps(self.pmi.snapshot()), encoding="utf-8")
        (directory / NGRAMS_FILE).write_text(json.dumps(ngram_records), encoding="utf-8")
        (directory / IDENTIFIERS_FILE).write_text(json.dumps(identifier_records), encoding="utf-8")
        logger.debug(f"Persisted fallback artifacts for {len(ngram_records)} chunks to {directory}")

    @classmethod
    def load(cls, directory: Union[str, Path]) -> "FallbackArtifacts":
        """Read artifacts written by persist(). Missing files load as empty.

        Raises:
            ValueError: If a file exists but is not valid JSON
        """
        directory = Path(directory)
        pmi_path = directory / PMI_FILE
        pmi = PmiGraph()
        if pmi_path.exists():
            pmi = PmiGraph.from_snapshot(json.loads(pmi_path.read_text(encoding="utf-8")))

        artifacts = cls(pmi)
        ngrams_path = directory / NGRAMS_FILE
        if ngrams_path.exists():
            for record in json.loads(ngrams_path.read_text(encoding="utf-8")):
                key = int(record["chunk_key"])
                artifacts._ngrams[key] = NGramVector.from_dict(record["vector"])
                if record.get("file_path"):
                    artifacts._files[key] = record["file_path"]

        identifiers_path = directory / IDENTIFIERS_FILE
        if identifiers_path.exists():
            for record in json.loads(identifiers_path.read_text(encoding="utf-8")):
                artifacts._identifiers[int(record["chunk_key"])] = IdentifierProfile(
                    tokens=tuple(record["tokens"])
                )

        return artifacts
