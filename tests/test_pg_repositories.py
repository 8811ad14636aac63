"""
Tests for the PostgreSQL repositories against a mocked connection pool.

- Vector search keeps the tenant and embedding-model predicates in SQL
- Reads run inside the tenant's RLS context
- Row mapping for pending chunks, stats and feedback aggregates
- Relevance and interaction upserts

Usage:
    pytest tests/test_pg_repositories.py -v
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from uuid import uuid4

import pytest

from companion.feedback.models import DocumentInteraction, FeedbackRecord, FeedbackType, InteractionType
from companion.feedback.repository import PostgresFeedbackRepository
from companion.rag.exceptions import DimensionMismatchError
from companion.rag.models import Chunk, EmbeddingTag, SearchFilters
from companion.rag.vector_index import PgVectorChunkRepository

TAG = EmbeddingTag("text-embedding-3-small", 3)
SINCE = datetime(2026, 9, 17, tzinfo=timezone.utc)


def make_db(rows=None, one=None):
    """Database double whose connection() and org_context() yield the same cursor."""
    cursor = MagicMock()
    cursor.fetchall.return_value = rows or []
    cursor.fetchone.return_value = one

    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor

    db = MagicMock()
    db.connection.return_value.__enter__.return_value = conn
    db.org_context.return_value.__enter__.return_value = conn
    return db, cursor


def executed(cursor, index=-1):
    sql, params = cursor.execute.call_args_list[index][0]
    return " ".join(sql.split()), params


# ============================================================================
# VECTOR INDEX
# ============================================================================

class TestPgVectorSearch:
    """Tests for PgVectorChunkRepository.search()."""

    def test_tenant_and_model_predicates(self):
        db, cursor = make_db()
        PgVectorChunkRepository(db).search([0.1, 0.2, 0.3], "org-1", 5, TAG)

        sql, params = executed(cursor)
        assert "d.tenant_id = %s" in sql
        assert "c.embedding IS NOT NULL" in sql
        assert "c.embedding_model = %s" in sql
        assert "c.embedding_dimensions = %s" in sql
        assert "ORDER BY c.embedding <=> %s::vector" in sql
        assert params == [[0.1, 0.2, 0.3], "org-1", TAG.model_id, 3, [0.1, 0.2, 0.3], 5]
        db.org_context.assert_called_once_with("org-1")

    def test_filters_add_predicates(self):
        db, cursor = make_db()
        filters = SearchFilters(source_types=["wiki"], created_after=SINCE)
        PgVectorChunkRepository(db).search([0.1, 0.2, 0.3], "org-1", 5, TAG, filters)

        sql, params = executed(cursor)
        assert "d.source_type = ANY(%s)" in sql
        assert "d.created_at >= %s" in sql
        assert params[4:6] == [["wiki"], SINCE]

    def test_maps_rows(self):
        chunk_id, doc_id = uuid4(), uuid4()
        db, _ = make_db(rows=[{
            "chunk_id": chunk_id,
            "document_id": doc_id,
            "text": "Voltage must stay within five percent.",
            "chunk_metadata": {"section": "power"},
            "title": "Electrical",
            "uri": None,
            "source_type": "wiki",
            "document_metadata": {"last_modified": "2026-10-01", "section": "root"},
            "similarity": 0.87,
        }])

        [candidate] = PgVectorChunkRepository(db).search([0.1, 0.2, 0.3], "org-1", 5, TAG)

        assert candidate.chunk_id == chunk_id
        assert candidate.score == pytest.approx(0.87)
        assert candidate.uri == ""
        assert candidate.metadata == {"last_modified": "2026-10-01", "section": "power"}

    def test_dimension_mismatch_raises_before_query(self):
        db, _ = make_db()
        with pytest.raises(DimensionMismatchError):
            PgVectorChunkRepository(db).search([0.1, 0.2], "org-1", 5, TAG)
        db.org_context.assert_not_called()

    def test_zero_limit_skips_query(self):
        db, _ = make_db()
        assert PgVectorChunkRepository(db).search([0.1, 0.2, 0.3], "org-1", 0, TAG) == []
        db.org_context.assert_not_called()


class TestPgVectorWrites:
    """Tests for chunk writes, pending chunks and stats."""

    def test_set_chunk_embedding(self):
        db, cursor = make_db()
        chunk_id = uuid4()
        PgVectorChunkRepository(db).set_chunk_embedding(chunk_id, [0.1, 0.2, 0.3], TAG)

        sql, params = executed(cursor)
        assert sql.startswith("UPDATE chunks SET embedding = %s::vector")
        assert params[:3] == ([0.1, 0.2, 0.3], TAG.model_id, 3)
        assert params[4] == str(chunk_id)

    def test_set_chunk_embedding_checks_dimensions(self):
        db, _ = make_db()
        with pytest.raises(DimensionMismatchError):
            PgVectorChunkRepository(db).set_chunk_embedding(uuid4(), [0.1], TAG)
        db.connection.assert_not_called()

    def test_replace_chunks(self):
        db, cursor = make_db()
        doc_id = uuid4()
        chunks = [
            Chunk(document_id=doc_id, chunk_index=0, text="a", token_count=1, content_hash="h0",
                  embedding=[0.1, 0.2, 0.3], embedding_tag=TAG),
            Chunk(document_id=doc_id, chunk_index=1, text="b", token_count=1, content_hash="h1"),
        ]

        with patch("companion.rag.vector_index.execute_values") as execute_values:
            PgVectorChunkRepository(db).replace_chunks(doc_id, chunks)

        assert executed(cursor, 0) == ("DELETE FROM chunks WHERE document_id = %s", (str(doc_id),))
        rows = execute_values.call_args[0][2]
        assert [row[2] for row in rows] == [0, 1]
        # Only the embedded chunk gets a vector update
        assert cursor.execute.call_count == 2
        assert executed(cursor)[1][4] == str(chunks[0].id)

    def test_pending_chunks(self):
        chunk_id = uuid4()
        db, cursor = make_db(rows=[{"id": str(chunk_id), "tenant_id": "org-1", "text": "pending"}])

        [pending] = PgVectorChunkRepository(db).pending_chunks(limit=10)

        assert pending.chunk_id == chunk_id
        assert pending.tenant_id == "org-1"
        assert executed(cursor)[1] == (10,)

    def test_stats(self):
        db, cursor = make_db(one=(2, 5, 3))
        stats = PgVectorChunkRepository(db).stats("org-1")
        assert stats == {"documents": 2, "chunks": 5, "embedded": 3, "pending": 2}
        assert executed(cursor)[1] == ("org-1",)


# ============================================================================
# FEEDBACK
# ============================================================================

class TestPostgresFeedback:
    """Tests for PostgresFeedbackRepository."""

    def test_org_stats(self):
        db, cursor = make_db(rows=[{"doc_id": "doc-1", "feedback_count": 3, "avg_score": 0.4}])

        stats = PostgresFeedbackRepository(db).org_feedback_stats("org-1", ["doc-1", "doc-2"], SINCE)

        assert stats["doc-1"].count == 3
        assert stats["doc-1"].avg_score == pytest.approx(0.4)
        sql, params = executed(cursor)
        assert "UNNEST(document_ids)" in sql
        assert "user_id" not in sql
        assert params == ["org-1", SINCE, ["doc-1", "doc-2"]]
        db.org_context.assert_called_once_with("org-1", None)

    def test_user_stats(self):
        db, cursor = make_db()
        PostgresFeedbackRepository(db).user_feedback_stats("org-1", "bob", ["doc-1"], SINCE)

        sql, params = executed(cursor)
        assert "AND user_id = %s" in sql
        assert params == ["org-1", SINCE, ["doc-1"], "bob"]
        db.org_context.assert_called_once_with("org-1", "bob")

    def test_empty_ids_skip_query(self):
        db, _ = make_db()
        repo = PostgresFeedbackRepository(db)
        assert repo.org_feedback_stats("org-1", [], SINCE) == {}
        assert repo.document_relevance("org-1", []) == {}
        assert repo.user_interactions("org-1", "bob", []) == {}
        db.org_context.assert_not_called()

    def test_relevance_upsert(self):
        db, cursor = make_db()
        PostgresFeedbackRepository(db).set_document_relevance("org-1", "doc-1", 0.35)

        sql, params = executed(cursor)
        assert sql.startswith("INSERT INTO document_relevance")
        assert "ON CONFLICT (tenant_id, document_id) DO UPDATE" in sql
        assert params == ("org-1", "doc-1", 0.35)

    def test_relevance_read(self):
        db, _ = make_db(rows=[("doc-1", 0.35)])
        assert PostgresFeedbackRepository(db).document_relevance("org-1", ["doc-1"]) == {"doc-1": 0.35}

    def test_add_feedback_runs_in_user_context(self):
        db, cursor = make_db()
        record = FeedbackRecord(
            tenant_id="org-1",
            user_id="bob",
            question="What voltage?",
            answer="Five percent.",
            feedback_type=FeedbackType.BAD,
            citations=[{"doc_id": "doc-1", "chunk_id": "c1"}, {"doc_id": "doc-1", "chunk_id": "c2"}],
        )

        PostgresFeedbackRepository(db).add_feedback(record)

        db.org_context.assert_called_once_with("org-1", "bob")
        params = executed(cursor)[1]
        assert params[6] == ["doc-1"]
        assert params[7] == "bad"

    def test_save_interaction(self):
        db, cursor = make_db()
        interaction = DocumentInteraction(
            tenant_id="org-1",
            user_id="bob",
            document_id="doc-1",
            access_frequency=4,
            relevance_score=0.6,
            interaction_type=InteractionType.FEEDBACK_GIVEN,
        )

        PostgresFeedbackRepository(db).save_interaction(interaction)

        sql, params = executed(cursor)
        assert "ON CONFLICT (tenant_id, user_id, document_id) DO UPDATE" in sql
        assert params[:6] == ("org-1", "bob", "doc-1", 4, 0.6, "feedback_given")
