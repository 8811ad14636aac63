"""
Tests for the heuristic reranker.

- Title and body lexical boosts
- Recency boost within the 30-day window
- Purity: inputs untouched, stable ordering, top_k truncation

Usage:
    pytest tests/test_reranker.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from companion.rag.reranker import (
    RerankConfig,
    count_matches,
    parse_timestamp,
    recency_boost,
    rerank,
    tokenize,
)

from tests.fakes import make_candidate

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


class TestTokenize:

    def test_lowercases_and_strips_punctuation(self):
        assert tokenize("Voltage, Requirements!") == ["voltage", "requirements"]

    def test_drops_short_tokens_and_stopwords(self):
        assert tokenize("What are the AC rules for this?") == ["rules"]


class TestCountMatches:

    def test_substring_either_direction(self):
        assert count_matches(["volt"], {"voltage"}) == 1
        assert count_matches(["voltages"], {"voltage"}) == 1
        assert count_matches(["lighting"], {"voltage"}) == 0


class TestRecency:

    def test_fresh_document_full_boost(self):
        boost = recency_boost({"last_modified": NOW.isoformat()}, NOW, RerankConfig())
        assert boost == pytest.approx(0.1)

    def test_linear_decay(self):
        metadata = {"last_modified": (NOW - timedelta(days=15)).isoformat()}
        assert recency_boost(metadata, NOW, RerankConfig()) == pytest.approx(0.05)

    def test_outside_window(self):
        metadata = {"last_modified": (NOW - timedelta(days=45)).isoformat()}
        assert recency_boost(metadata, NOW, RerankConfig()) == 0.0

    def test_missing_or_invalid(self):
        assert recency_boost({}, NOW, RerankConfig()) == 0.0
        assert recency_boost({"last_modified": "yesterday"}, NOW, RerankConfig()) == 0.0

    def test_zulu_and_naive_timestamps(self):
        assert parse_timestamp("2026-10-17T12:00:00Z") == NOW
        assert parse_timestamp(datetime(2026, 10, 17, 12, 0)) == NOW


class TestRerank:
    """Tests for rerank()."""

    def test_title_match_boost(self):
        plain = make_candidate(score=0.5, title="Lighting design", text="unrelated words")
        titled = make_candidate(score=0.5, title="Voltage guide", text="unrelated words")
        result = rerank("voltage", [plain, titled], top_k=2, now=NOW)
        assert result[0].chunk_id == titled.chunk_id
        assert result[0].score == pytest.approx(0.6)
        assert result[1].score == pytest.approx(0.5)

    def test_body_match_boost(self):
        candidate = make_candidate(score=0.5, title="Guide", text="Voltage requirements for motors")
        result = rerank("voltage requirements", [candidate], top_k=1, now=NOW)
        assert result[0].score == pytest.approx(0.6)

    def test_boosts_accumulate(self):
        candidate = make_candidate(
            score=0.4,
            title="Voltage",
            text="voltage limits",
            metadata={"last_modified": NOW.isoformat()},
        )
        result = rerank("voltage", [candidate], top_k=1, now=NOW)
        assert result[0].score == pytest.approx(0.4 + 0.1 + 0.05 + 0.1)

    def test_recency_reorders(self):
        old = make_candidate(score=0.55, metadata={"last_modified": (NOW - timedelta(days=60)).isoformat()})
        fresh = make_candidate(score=0.5, metadata={"last_modified": NOW.isoformat()})
        result = rerank("anything", [old, fresh], top_k=2, now=NOW)
        assert result[0].chunk_id == fresh.chunk_id

    def test_top_k_truncation(self):
        candidates = [make_candidate(score=s / 10) for s in range(10)]
        result = rerank("query", candidates, top_k=3, now=NOW)
        assert [round(c.score, 2) for c in result] == [0.9, 0.8, 0.7]

    def test_ties_keep_input_order(self):
        candidates = [make_candidate(score=0.5) for _ in range(4)]
        result = rerank("zzz", candidates, top_k=4, now=NOW)
        assert [c.chunk_id for c in result] == [c.chunk_id for c in candidates]

    def test_inputs_not_mutated(self):
        candidate = make_candidate(score=0.5, title="Voltage")
        rerank("voltage", [candidate], top_k=1, now=NOW)
        assert candidate.score == 0.5

    def test_empty_and_zero_top_k(self):
        assert rerank("q", [], top_k=5) == []
        assert rerank("q", [make_candidate()], top_k=0) == []

    def test_stopword_only_query_no_lexical_boost(self):
        candidate = make_candidate(score=0.5, title="What is this", text="what is this")
        assert rerank("what is this", [candidate], top_k=1, now=NOW)[0].score == pytest.approx(0.5)
