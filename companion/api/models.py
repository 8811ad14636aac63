"""
API Models
==========

Pydantic models for API request/response serialization.
"""

from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any
from datetime import datetime, timezone
from enum import Enum


class FeedbackTypeEnum(str, Enum):
    """Feedback verdicts accepted by the API."""
    GOOD = "good"
    HELPFUL = "helpful"
    IRRELEVANT = "irrelevant"
    BAD = "bad"


class TimeframeEnum(str, Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


class CitationModel(BaseModel):
    """Reference back to a source chunk."""
    doc_id: str
    chunk_id: str
    uri: str = ""
    title: str = ""
    span: str = ""
    score: float = 0.0


class ChatRequest(BaseModel):
    """Grounded question."""
    query: str = Field(..., min_length=1, description="User question")
    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    max_chunks: Optional[int] = Field(
        None, ge=1, le=50, description="Final chunks used as context (default RAG_MAX_CHUNKS)"
    )
    include_recent: bool = Field(False, description="Only documents from the last 30 days")
    source_types: Optional[List[str]] = Field(None, description="Restrict to these source types")


class ChatResponse(BaseModel):
    """Grounded answer. Same shape on success and degradation."""
    answer: str
    citations: List[CitationModel] = []
    retrieved_chunks: int = 0
    confidence: float = 0.0


class IngestRequest(BaseModel):
    """Document to add or refresh."""
    tenant_id: str = Field(..., min_length=1)
    source_id: str = Field(..., min_length=1, description="Stable id of the document in its source")
    uri: str = ""
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    source_type: str = "manual"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class IngestResponse(BaseModel):
    document_id: str
    status: str
    chunks_created: int
    chunks_embedded: int
    chunks_failed: int


class FeedbackRequest(BaseModel):
    """Verdict on an answer."""
    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    question: str
    answer: str
    citations: List[CitationModel] = []
    feedback_type: FeedbackTypeEnum
    details: Optional[str] = None


class FeedbackResponse(BaseModel):
    id: str
    feedback_type: FeedbackTypeEnum
    documents_updated: int


class KnowledgeGapModel(BaseModel):
    topic: str
    question_count: int
    bad_feedback_ratio: float
    sample_questions: List[str] = []


class SuggestionModel(BaseModel):
    type: str
    suggestion: str
    impact_score: float
    data: Dict[str, Any] = {}


class KnowledgeGapsResponse(BaseModel):
    tenant_id: str
    timeframe: TimeframeEnum
    gaps: List[KnowledgeGapModel]
    suggestions: List[SuggestionModel]


class SimilarQuestionModel(BaseModel):
    question: str
    answer: str
    feedback_type: FeedbackTypeEnum
    similarity: float
    feedback_score: float


class SimilarQuestionsResponse(BaseModel):
    tenant_id: str
    question: str
    similar_questions: List[SimilarQuestionModel]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    database: str
    cache: str
    embedding_model: str
    completion: str
    chunks: Optional[Dict[str, int]] = None
