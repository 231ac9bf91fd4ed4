# Copyright 2026 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.

"""Tests for the lexical fallback artifacts."""

import math

import pytest

from codeindex.models import Chunk, compute_checksum, point_id
from codeindex.vector.fallback import (
    MAX_PMI_TOKENS,
    FallbackArtifacts,
    IdentifierProfile,
    NGramVector,
    PmiGraph,
    identifier_tokens,
)


def make_chunk(text: str, file_path: str = "src/http.py", start_line: int = 1) -> Chunk:
    return Chunk(
        id=1,
        file_path=file_path,
        language="python",
        text=text,
        start_line=start_line,
        end_line=start_line,
        token_count=1,
        checksum=compute_checksum(text),
    )


class TestIdentifierTokens:
    """Test identifier splitting."""

    def test_snake_and_camel_case(self):
        assert identifier_tokens("def parseHTTPRequest(raw_bytes):") == [
            "def",
            "parse",
            "http",
            "request",
            "raw",
            "bytes",
        ]

    def test_duplicates_and_single_letters_dropped(self):
        assert identifier_tokens("x = load_user(user_id) + load_user(y)") == ["load", "user", "id"]

    def test_no_identifiers(self):
        assert identifier_tokens("1 + 2 == 3") == []


class TestNGramVector:
    """Test character n-gram sketches."""

    def test_vectors_are_unit_length(self):
        vector = NGramVector.from_text("fetch_user_profile")
        assert math.isclose(math.sqrt(sum(v * v for v in vector.trigrams.values())), 1.0)
        assert math.isclose(math.sqrt(sum(v * v for v in vector.quadgrams.values())), 1.0)

    def test_identical_text_scores_two(self):
        a = NGramVector.from_text("fetch_user_profile")
        b = NGramVector.from_text("fetch_user_profile")
        assert a.cosine_similarity(b) == pytest.approx(2.0)

    def test_similar_text_scores_higher_than_unrelated(self):
        query = NGramVector.from_text("fetch_user")
        close = NGramVector.from_text("fetch_user_profile")
        far = NGramVector.from_text("render_template")
        assert query.cosine_similarity(close) > query.cosine_similarity(far)

    def test_short_text_is_empty(self):
        assert NGramVector.from_text("ab").is_empty()
        assert not NGramVector.from_text("abc").is_empty()


class TestIdentifierProfile:
    """Test identifier overlap scoring."""

    def test_overlap_fraction(self):
        profile = IdentifierProfile.from_chunk(make_chunk("def load_user(user_id): pass"))
        assert profile.score_overlap(["load", "user"]) == 1.0
        assert profile.score_overlap(["load", "save"]) == 0.5
        assert profile.score_overlap([]) == 0.0


class TestPmiGraph:
    """Test co-occurrence counting."""

    def test_ordered_pairs_counted(self):
        graph = PmiGraph()
        graph.update(["load", "user", "id"])
        graph.update(["load", "user"])

        assert graph.marginal("load") == 2
        assert graph.marginal("id") == 1
        assert graph.cooccurrence("load", "user") == 2
        assert graph.cooccurrence("user", "load") == 0
        assert graph.cooccurrence("load", "id") == 1

    def test_tokens_capped(self):
        graph = PmiGraph()
        graph.update([f"tok{i}" for i in range(MAX_PMI_TOKENS + 10)])

        assert graph.marginal(f"tok{MAX_PMI_TOKENS - 1}") == 1
        assert graph.marginal(f"tok{MAX_PMI_TOKENS}") == 0

    def test_snapshot_restores_counts(self):
        graph = PmiGraph()
        graph.update(["alpha", "beta"])

        restored = PmiGraph.from_snapshot(graph.snapshot())

        assert restored.marginal("alpha") == 1
        assert restored.cooccurrence("alpha", "beta") == 1


class TestFallbackArtifacts:
    """Test the per-chunk artifact table."""

    def record(self, artifacts: FallbackArtifacts, chunk: Chunk) -> int:
        key = point_id(chunk)
        artifacts.record_chunk(key, chunk, NGramVector.from_text(chunk.text))
        return key

    def test_record_and_lookup(self):
        artifacts = FallbackArtifacts()
        key = self.record(artifacts, make_chunk("def send_request(): pass"))

        assert len(artifacts) == 1
        assert not artifacts.ngram(key).is_empty()
        assert "request" in artifacts.identifier(key).tokens
        assert artifacts.pmi.marginal("send") == 1

    def test_rerecord_replaces_entry(self):
        artifacts = FallbackArtifacts()
        first = self.record(artifacts, make_chunk("def a(): pass"))
        second = self.record(artifacts, make_chunk("def b(): return 2"))

        assert first == second
        assert len(artifacts) == 1

    def test_forget_file(self):
        artifacts = FallbackArtifacts()
        self.record(artifacts, make_chunk("def a(): pass", file_path="a.py"))
        self.record(artifacts, make_chunk("def b(): pass", file_path="a.py", start_line=5))
        kept = self.record(artifacts, make_chunk("def c(): pass", file_path="c.py"))

        assert artifacts.forget_file("a.py") == 2
        assert len(artifacts) == 1
        assert artifacts.keys_for_file("c.py") == [kept]

    def test_persist_and_load(self, tmp_path):
        artifacts = FallbackArtifacts()
        key = self.record(artifacts, make_chunk("def parse_config(path): return path"))

        artifacts.persist(tmp_path)
        loaded = FallbackArtifacts.load(tmp_path)

        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "identifiers.json",
            "ngrams.json",
            "pmi_graph.json",
        ]
        assert len(loaded) == 1
        assert loaded.ngram(key).cosine_similarity(artifacts.ngram(key)) == pytest.approx(2.0)
        assert loaded.identifier(key) == artifacts.identifier(key)
        assert loaded.keys_for_file("src/http.py") == [key]
        assert loaded.pmi.cooccurrence("parse", "config") == 1

    def test_load_missing_directory_is_empty(self, tmp_path):
        loaded = FallbackArtifacts.load(tmp_path / "nothing")
        assert len(loaded) == 0

    def test_load_corrupt_file_raises(self, tmp_path):
        (tmp_path / "ngrams.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            FallbackArtifacts.load(tmp_path)
