"""
Feedback Data Models
====================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from uuid import UUID, uuid4


class FeedbackType(Enum):
    """User verdict on an answer."""
    GOOD = "good"
    HELPFUL = "helpful"
    IRRELEVANT = "irrelevant"
    BAD = "bad"

    @property
    def is_negative(self) -> bool:
        return self in (FeedbackType.BAD, FeedbackType.IRRELEVANT)


class InteractionType(Enum):
    """How a user came across a document."""
    QUERY_REFERENCED = "query_referenced"
    EXPLICITLY_OPENED = "explicitly_opened"
    FEEDBACK_GIVEN = "feedback_given"


@dataclass
class FeedbackRecord:
    """
    Feedback on one answer.

    ``citations`` keeps the cited doc/chunk ids with their title and uri so
    the record stays meaningful after documents change.
    """
    tenant_id: str
    user_id: str
    question: str
    answer: str
    feedback_type: FeedbackType
    citations: List[Dict[str, Any]] = field(default_factory=list)
    details: Optional[str] = None

    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def document_ids(self) -> List[str]:
        seen: List[str] = []
        for citation in self.citations:
            doc_id = citation.get("doc_id")
            if doc_id and doc_id not in seen:
                seen.append(doc_id)
        return seen

    @property
    def chunk_ids(self) -> List[str]:
        return [c["chunk_id"] for c in self.citations if c.get("chunk_id")]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "question": self.question,
            "feedback_type": self.feedback_type.value,
            "document_ids": self.document_ids,
            "details": self.details,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class FeedbackStats:
    """Feedback aggregate for one document."""
    count: int = 0
    avg_score: float = 0.5


@dataclass
class DocumentInteraction:
    """A user's access history with one document."""
    tenant_id: str
    user_id: str
    document_id: str
    access_frequency: int = 0
    relevance_score: float = 0.5
    interaction_type: InteractionType = InteractionType.QUERY_REFERENCED
    last_accessed: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class ScoredDocument:
    """Adjuster input."""
    doc_id: str
    chunk_id: str
    base_score: float


@dataclass
class AdjustedScore:
    """Adjuster output. ``factor`` is the clamped product of all signals."""
    doc_id: str
    chunk_id: str
    adjusted_score: float
    factor: float = 1.0


@dataclass
class KnowledgeGap:
    """A topic users keep asking about and keep rating badly."""
    topic: str
    question_count: int
    bad_feedback_ratio: float
    sample_questions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "question_count": self.question_count,
            "bad_feedback_ratio": self.bad_feedback_ratio,
            "sample_questions": self.sample_questions,
        }


@dataclass
class ImprovementSuggestion:
    """Actionable suggestion derived from feedback patterns."""
    type: str  # source | content
    suggestion: str
    impact_score: float
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "suggestion": self.suggestion,
            "impact_score": round(self.impact_score, 4),
            "data": self.data,
        }


@dataclass
class SimilarQuestion:
    """A past, positively rated question close to a new one."""
    question: str
    answer: str
    feedback_type: FeedbackType
    similarity: float
    feedback_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "question": self.question,
            "answer": self.answer,
            "feedback_type": self.feedback_type.value,
            "similarity": round(self.similarity, 4),
            "feedback_score": self.feedback_score,
        }
