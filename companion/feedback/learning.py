"""
Feedback Learning
=================

Records answer feedback and document interactions, and turns the feedback
history into knowledge gaps, improvement suggestions and lookups of
similar, well-rated past questions.

Usage:
    learning = FeedbackLearning(repository)
    learning.record_feedback(tenant_id, user_id, question, answer, citations, "bad")
    gaps = learning.knowledge_gaps(tenant_id, timeframe="month")
    similar = await learning.similar_questions(tenant_id, "How do I reset my VPN token?")
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from ..rag.embedder import RAGEmbedder
from ..rag.models import Citation
from .heuristics import (
    DEFAULT_RELEVANCE,
    feedback_score,
    find_content_issues,
    find_knowledge_gaps,
    find_source_gaps,
    parse_feedback_type,
    relevance_adjustment,
    timeframe_days,
    update_interaction_relevance,
    update_relevance,
)
from .models import (
    DocumentInteraction,
    FeedbackRecord,
    FeedbackType,
    ImprovementSuggestion,
    InteractionType,
    KnowledgeGap,
    SimilarQuestion,
)
from .repository import FeedbackRepository

logger = logging.getLogger(__name__)

SUGGESTION_WINDOW_DAYS = 30
SIMILAR_QUESTION_WINDOW_DAYS = 90
SIMILAR_QUESTION_THRESHOLD = 0.7


def _citation_dict(citation: Union[Citation, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(citation, Citation):
        return {
            "doc_id": citation.doc_id,
            "chunk_id": citation.chunk_id,
            "title": citation.title,
            "uri": citation.uri,
        }
    return {
        "doc_id": str(citation.get("doc_id", "")),
        "chunk_id": str(citation.get("chunk_id", "")),
        "title": citation.get("title", ""),
        "uri": citation.get("uri", ""),
    }


class FeedbackLearning:
    """Write side of the feedback loop plus feedback analytics."""

    def __init__(self, repository: FeedbackRepository, embedder: Optional[RAGEmbedder] = None):
        self.repository = repository
        self.embedder = embedder

    def record_feedback(
        self,
        tenant_id: str,
        user_id: str,
        question: str,
        answer: str,
        citations: Sequence[Union[Citation, Dict[str, Any]]],
        feedback_type: Union[str, FeedbackType],
        details: Optional[str] = None,
    ) -> FeedbackRecord:
        """
        Store feedback and nudge the relevance of every cited document and chunk.

        Raises:
            ValueError: If feedback_type is unknown
        """
        feedback_type = parse_feedback_type(feedback_type)
        record = FeedbackRecord(
            tenant_id=tenant_id,
            user_id=user_id,
            question=question,
            answer=answer,
            feedback_type=feedback_type,
            citations=[_citation_dict(c) for c in citations],
            details=details,
        )
        self.repository.add_feedback(record)

        adjustment = relevance_adjustment(feedback_type)

        doc_ids = record.document_ids
        doc_scores = self.repository.document_relevance(tenant_id, doc_ids)
        for doc_id in doc_ids:
            self.repository.set_document_relevance(
                tenant_id, doc_id, update_relevance(doc_scores.get(doc_id), adjustment)
            )

        chunk_ids = record.chunk_ids
        chunk_scores = self.repository.chunk_relevance(tenant_id, chunk_ids)
        for chunk_id in chunk_ids:
            self.repository.set_chunk_relevance(
                tenant_id, chunk_id, update_relevance(chunk_scores.get(chunk_id), adjustment)
            )

        logger.info(
            f"Recorded {feedback_type.value} feedback on {len(doc_ids)} documents",
            extra={"tenant_id": tenant_id, "user_id": user_id},
        )
        return record

    def record_document_interaction(
        self,
        tenant_id: str,
        user_id: str,
        document_id: str,
        interaction_type: InteractionType = InteractionType.QUERY_REFERENCED,
        relevance_score: Optional[float] = None,
    ) -> DocumentInteraction:
        """Bump access frequency; fold an observed relevance into the personal score."""
        existing = self.repository.user_interactions(tenant_id, user_id, [document_id]).get(document_id)

        if existing is None:
            interaction = DocumentInteraction(
                tenant_id=tenant_id,
                user_id=user_id,
                document_id=document_id,
                access_frequency=1,
                relevance_score=relevance_score if relevance_score is not None else DEFAULT_RELEVANCE,
                interaction_type=interaction_type,
            )
        else:
            interaction = existing
            interaction.access_frequency += 1
            interaction.interaction_type = interaction_type
            interaction.last_accessed = datetime.now(timezone.utc)
            if relevance_score is not None:
                interaction.relevance_score = update_interaction_relevance(
                    interaction.relevance_score, relevance_score
                )

        self.repository.save_interaction(interaction)
        return interaction

    def knowledge_gaps(
        self,
        tenant_id: str,
        timeframe: str = "month",
        now: Optional[datetime] = None,
    ) -> List[KnowledgeGap]:
        """
        Topics with recurring negative feedback.

        Args:
            timeframe: week, month or quarter
        """
        since = (now or datetime.now(timezone.utc)) - timedelta(days=timeframe_days(timeframe))
        return find_knowledge_gaps(self.repository.list_feedback(tenant_id, since))

    def improvement_suggestions(
        self,
        tenant_id: str,
        now: Optional[datetime] = None,
    ) -> List[ImprovementSuggestion]:
        """Missing-source and stale-content suggestions, highest impact first."""
        since = (now or datetime.now(timezone.utc)) - timedelta(days=SUGGESTION_WINDOW_DAYS)
        records = self.repository.list_feedback(tenant_id, since)

        cited = sorted({doc_id for r in records for doc_id in r.document_ids})
        relevance = self.repository.document_relevance(tenant_id, cited)

        suggestions = find_source_gaps(records) + find_content_issues(records, relevance)
        suggestions.sort(key=lambda s: s.impact_score, reverse=True)
        return suggestions

    async def similar_questions(
        self,
        tenant_id: str,
        question: str,
        limit: int = 5,
        now: Optional[datetime] = None,
    ) -> List[SimilarQuestion]:
        """
        Past questions rated good or helpful that are close to ``question``.

        Only questions embedded under the same model as the new one are
        compared. Sorted by similarity, then feedback score.

        Raises:
            ValueError: If no embedder is configured or the question is empty
        """
        if self.embedder is None:
            raise ValueError("similar_questions requires an embedder")
        if limit <= 0:
            return []

        query = await self.embedder.embed(question)

        since = (now or datetime.now(timezone.utc)) - timedelta(days=SIMILAR_QUESTION_WINDOW_DAYS)
        latest: Dict[str, FeedbackRecord] = {}
        for record in self.repository.list_feedback(tenant_id, since):
            if record.feedback_type in (FeedbackType.GOOD, FeedbackType.HELPFUL) and record.question.strip():
                latest[record.question] = record
        if not latest:
            return []

        records = list(latest.values())
        items = await self.embedder.embed_batch([r.question for r in records])

        matches: List[SimilarQuestion] = []
        for record, item in zip(records, items):
            if not item.ok or item.result.tag != query.tag:
                continue
            similarity = query.similarity(item.result)
            if similarity > SIMILAR_QUESTION_THRESHOLD:
                matches.append(SimilarQuestion(
                    question=record.question,
                    answer=record.answer,
                    feedback_type=record.feedback_type,
                    similarity=similarity,
                    feedback_score=feedback_score(record.feedback_type),
                ))

        matches.sort(key=lambda m: (m.similarity, m.feedback_score), reverse=True)
        return matches[:limit]
