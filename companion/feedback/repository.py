"""
Feedback Repository
===================

Storage for answer feedback, relevance scores and user/document
interactions. Reads take a list of document ids so one query covers all
candidates of a search.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from psycopg2.extras import RealDictCursor, Json

from ..db import Database
from .heuristics import feedback_score
from .models import (
    DocumentInteraction,
    FeedbackRecord,
    FeedbackStats,
    FeedbackType,
    InteractionType,
)

logger = logging.getLogger(__name__)

# SQL mirror of heuristics.FEEDBACK_SCORES
_SCORE_CASE = """
    CASE feedback_type
        WHEN 'good' THEN 1.0
        WHEN 'helpful' THEN 0.7
        WHEN 'irrelevant' THEN 0.3
        WHEN 'bad' THEN 0.0
        ELSE 0.5
    END
"""


class FeedbackRepository(ABC):
    """Feedback store used by the adjuster and by feedback learning."""

    @abstractmethod
    def add_feedback(self, record: FeedbackRecord) -> None:
        pass

    @abstractmethod
    def list_feedback(self, tenant_id: str, since: datetime) -> List[FeedbackRecord]:
        """Feedback created after ``since``, oldest first."""

    @abstractmethod
    def org_feedback_stats(
        self, tenant_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        """Per-document feedback aggregate. Documents without feedback are absent."""

    @abstractmethod
    def user_feedback_stats(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        """Same as org_feedback_stats restricted to one user's feedback."""

    @abstractmethod
    def document_relevance(self, tenant_id: str, doc_ids: Sequence[str]) -> Dict[str, float]:
        """Stored relevance per document. Documents never scored are absent."""

    @abstractmethod
    def set_document_relevance(self, tenant_id: str, doc_id: str, score: float) -> None:
        pass

    @abstractmethod
    def chunk_relevance(self, tenant_id: str, chunk_ids: Sequence[str]) -> Dict[str, float]:
        pass

    @abstractmethod
    def set_chunk_relevance(self, tenant_id: str, chunk_id: str, score: float) -> None:
        pass

    @abstractmethod
    def user_interactions(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentInteraction]:
        pass

    @abstractmethod
    def save_interaction(self, interaction: DocumentInteraction) -> None:
        pass


def _aggregate(records: List[FeedbackRecord], doc_ids: Sequence[str]) -> Dict[str, FeedbackStats]:
    wanted = set(doc_ids)
    scores: Dict[str, List[float]] = defaultdict(list)
    for record in records:
        for doc_id in record.document_ids:
            if doc_id in wanted:
                scores[doc_id].append(feedback_score(record.feedback_type))
    return {
        doc_id: FeedbackStats(count=len(values), avg_score=sum(values) / len(values))
        for doc_id, values in scores.items()
    }


class InMemoryFeedbackRepository(FeedbackRepository):
    """Dict-backed feedback store."""

    def __init__(self):
        self._feedback: List[FeedbackRecord] = []
        self._document_relevance: Dict[Tuple[str, str], float] = {}
        self._chunk_relevance: Dict[Tuple[str, str], float] = {}
        self._interactions: Dict[Tuple[str, str, str], DocumentInteraction] = {}

    def add_feedback(self, record: FeedbackRecord) -> None:
        self._feedback.append(record)

    def list_feedback(self, tenant_id: str, since: datetime) -> List[FeedbackRecord]:
        records = [r for r in self._feedback if r.tenant_id == tenant_id and r.created_at > since]
        return sorted(records, key=lambda r: r.created_at)

    def org_feedback_stats(
        self, tenant_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        return _aggregate(self.list_feedback(tenant_id, since), doc_ids)

    def user_feedback_stats(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        records = [r for r in self.list_feedback(tenant_id, since) if r.user_id == user_id]
        return _aggregate(records, doc_ids)

    def document_relevance(self, tenant_id: str, doc_ids: Sequence[str]) -> Dict[str, float]:
        return {
            doc_id: self._document_relevance[(tenant_id, doc_id)]
            for doc_id in doc_ids
            if (tenant_id, doc_id) in self._document_relevance
        }

    def set_document_relevance(self, tenant_id: str, doc_id: str, score: float) -> None:
        self._document_relevance[(tenant_id, doc_id)] = score

    def chunk_relevance(self, tenant_id: str, chunk_ids: Sequence[str]) -> Dict[str, float]:
        return {
            chunk_id: self._chunk_relevance[(tenant_id, chunk_id)]
            for chunk_id in chunk_ids
            if (tenant_id, chunk_id) in self._chunk_relevance
        }

    def set_chunk_relevance(self, tenant_id: str, chunk_id: str, score: float) -> None:
        self._chunk_relevance[(tenant_id, chunk_id)] = score

    def user_interactions(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentInteraction]:
        return {
            doc_id: self._interactions[(tenant_id, user_id, doc_id)]
            for doc_id in doc_ids
            if (tenant_id, user_id, doc_id) in self._interactions
        }

    def save_interaction(self, interaction: DocumentInteraction) -> None:
        key = (interaction.tenant_id, interaction.user_id, interaction.document_id)
        self._interactions[key] = interaction


class PostgresFeedbackRepository(FeedbackRepository):
    """psycopg2 feedback store. All statements run in the tenant's RLS context."""

    def __init__(self, db: Database):
        self.db = db

    def add_feedback(self, record: FeedbackRecord) -> None:
        with self.db.org_context(record.tenant_id, record.user_id) as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO answer_feedback (
                        id, tenant_id, user_id, question, answer,
                        citations, document_ids, feedback_type, details, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """, (
                    str(record.id),
                    record.tenant_id,
                    record.user_id,
                    record.question,
                    record.answer,
                    Json(record.citations),
                    record.document_ids,
                    record.feedback_type.value,
                    record.details,
                    record.created_at,
                ))

    def list_feedback(self, tenant_id: str, since: datetime) -> List[FeedbackRecord]:
        with self.db.org_context(tenant_id) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, tenant_id, user_id, question, answer, citations,
                           feedback_type, details, created_at
                    FROM answer_feedback
                    WHERE tenant_id = %s AND created_at > %s
                    ORDER BY created_at
                """, (tenant_id, since))
                rows = cur.fetchall()

        return [
            FeedbackRecord(
                id=row["id"],
                tenant_id=row["tenant_id"],
                user_id=row["user_id"],
                question=row["question"],
                answer=row["answer"],
                citations=row["citations"] or [],
                feedback_type=FeedbackType(row["feedback_type"]),
                details=row["details"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def _feedback_stats(
        self, tenant_id: str, user_id: Optional[str], doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        if not doc_ids:
            return {}

        sql = f"""
            SELECT doc_id, COUNT(*) AS feedback_count, AVG({_SCORE_CASE}) AS avg_score
            FROM answer_feedback, UNNEST(document_ids) AS doc_id
            WHERE tenant_id = %s
              AND created_at > %s
              AND doc_id = ANY(%s)
        """
        params = [tenant_id, since, list(doc_ids)]
        if user_id is not None:
            sql += " AND user_id = %s"
            params.append(user_id)
        sql += " GROUP BY doc_id"

        with self.db.org_context(tenant_id, user_id) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()

        return {
            row["doc_id"]: FeedbackStats(count=int(row["feedback_count"]), avg_score=float(row["avg_score"]))
            for row in rows
        }

    def org_feedback_stats(
        self, tenant_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        return self._feedback_stats(tenant_id, None, doc_ids, since)

    def user_feedback_stats(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str], since: datetime
    ) -> Dict[str, FeedbackStats]:
        return self._feedback_stats(tenant_id, user_id, doc_ids, since)

    def _relevance(self, table: str, key: str, tenant_id: str, ids: Sequence[str]) -> Dict[str, float]:
        if not ids:
            return {}
        with self.db.org_context(tenant_id) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {key}, relevance_score FROM {table} WHERE tenant_id = %s AND {key} = ANY(%s)",
                    (tenant_id, list(ids)),
                )
                rows = cur.fetchall()
        return {str(row[0]): float(row[1]) for row in rows}

    def _set_relevance(self, table: str, key: str, tenant_id: str, item_id: str, score: float) -> None:
        with self.db.org_context(tenant_id) as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    INSERT INTO {table} (tenant_id, {key}, relevance_score, updated_at)
                    VALUES (%s, %s, %s, NOW())
                    ON CONFLICT (tenant_id, {key}) DO UPDATE SET
                        relevance_score = EXCLUDED.relevance_score,
                        updated_at = NOW()
                """, (tenant_id, item_id, score))

    def document_relevance(self, tenant_id: str, doc_ids: Sequence[str]) -> Dict[str, float]:
        return self._relevance("document_relevance", "document_id", tenant_id, doc_ids)

    def set_document_relevance(self, tenant_id: str, doc_id: str, score: float) -> None:
        self._set_relevance("document_relevance", "document_id", tenant_id, doc_id, score)

    def chunk_relevance(self, tenant_id: str, chunk_ids: Sequence[str]) -> Dict[str, float]:
        return self._relevance("chunk_relevance", "chunk_id", tenant_id, chunk_ids)

    def set_chunk_relevance(self, tenant_id: str, chunk_id: str, score: float) -> None:
        self._set_relevance("chunk_relevance", "chunk_id", tenant_id, chunk_id, score)

    def user_interactions(
        self, tenant_id: str, user_id: str, doc_ids: Sequence[str]
    ) -> Dict[str, DocumentInteraction]:
        if not doc_ids:
            return {}
        with self.db.org_context(tenant_id, user_id) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT document_id, access_frequency, relevance_score, interaction_type, last_accessed
                    FROM user_document_interactions
                    WHERE tenant_id = %s AND user_id = %s AND document_id = ANY(%s)
                """, (tenant_id, user_id, list(doc_ids)))
                rows = cur.fetchall()

        return {
            row["document_id"]: DocumentInteraction(
                tenant_id=tenant_id,
                user_id=user_id,
                document_id=row["document_id"],
                access_frequency=row["access_frequency"],
                relevance_score=float(row["relevance_score"]),
                interaction_type=InteractionType(row["interaction_type"]),
                last_accessed=row["last_accessed"],
            )
            for row in rows
        }

    def save_interaction(self, interaction: DocumentInteraction) -> None:
        with self.db.org_context(interaction.tenant_id, interaction.user_id) as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO user_document_interactions (
                        tenant_id, user_id, document_id,
                        access_frequency, relevance_score, interaction_type, last_accessed
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (tenant_id, user_id, document_id) DO UPDATE SET
                        access_frequency = EXCLUDED.access_frequency,
                        relevance_score = EXCLUDED.relevance_score,
                        interaction_type = EXCLUDED.interaction_type,
                        last_accessed = EXCLUDED.last_accessed
                """, (
                    interaction.tenant_id,
                    interaction.user_id,
                    interaction.document_id,
                    interaction.access_frequency,
                    interaction.relevance_score,
                    interaction.interaction_type.value,
                    interaction.last_accessed,
                ))
