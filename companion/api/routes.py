"""
Knowledge Companion API Routes
==============================

Chat, ingestion and feedback endpoints.
"""

import logging
from fastapi import APIRouter, HTTPException, Query, Request

from ..feedback.models import InteractionType
from ..rag.models import AnswerOptions
from ..services import Services
from .models import (
    ChatRequest,
    ChatResponse,
    CitationModel,
    FeedbackRequest,
    FeedbackResponse,
    IngestRequest,
    IngestResponse,
    KnowledgeGapModel,
    KnowledgeGapsResponse,
    SimilarQuestionModel,
    SimilarQuestionsResponse,
    SuggestionModel,
    TimeframeEnum,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Knowledge"])


def get_services(request: Request) -> Services:
    return request.app.state.services


# =============================================================================
# CHAT
# =============================================================================

@router.post("/chat", response_model=ChatResponse)
async def chat(request: Request, body: ChatRequest):
    """
    Answer a question from the tenant's knowledge base.

    Backend failures degrade to a canned answer with confidence 0 rather
    than an HTTP error.
    """
    services = get_services(request)
    result = await services.answers.generate_grounded_answer(
        body.query,
        body.tenant_id,
        body.user_id,
        AnswerOptions(
            max_chunks=body.max_chunks or services.settings.retrieval.max_chunks,
            include_recent=body.include_recent,
            source_types=body.source_types,
        ),
    )

    # Personalization signal: the user was shown these documents
    for doc_id in dict.fromkeys(c.doc_id for c in result.citations):
        try:
            services.learning.record_document_interaction(
                body.tenant_id, body.user_id, doc_id, InteractionType.QUERY_REFERENCED
            )
        except Exception as e:
            logger.warning(f"Failed to record interaction for {doc_id}: {e}")

    return ChatResponse(
        answer=result.answer,
        citations=[CitationModel(**c.to_dict()) for c in result.citations],
        retrieved_chunks=result.retrieved_chunks,
        confidence=round(result.confidence, 4),
    )


# =============================================================================
# INGESTION
# =============================================================================

@router.post("/ingest", response_model=IngestResponse)
async def ingest(request: Request, body: IngestRequest):
    """Add or refresh a document. Unchanged content is skipped."""
    services = get_services(request)
    try:
        result = await services.ingestion.ingest_document(
            tenant_id=body.tenant_id,
            source_id=body.source_id,
            uri=body.uri,
            title=body.title,
            content=body.content,
            source_type=body.source_type,
            metadata=body.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return IngestResponse(**result.to_dict())


# =============================================================================
# FEEDBACK
# =============================================================================

@router.post("/feedback", response_model=FeedbackResponse)
async def feedback(request: Request, body: FeedbackRequest):
    """Record a verdict on an answer and update document relevance."""
    services = get_services(request)
    record = services.learning.record_feedback(
        tenant_id=body.tenant_id,
        user_id=body.user_id,
        question=body.question,
        answer=body.answer,
        citations=[c.model_dump() for c in body.citations],
        feedback_type=body.feedback_type.value,
        details=body.details,
    )
    return FeedbackResponse(
        id=str(record.id),
        feedback_type=record.feedback_type.value,
        documents_updated=len(record.document_ids),
    )


@router.get("/feedback/gaps", response_model=KnowledgeGapsResponse)
async def knowledge_gaps(
    request: Request,
    tenant_id: str = Query(..., min_length=1),
    timeframe: TimeframeEnum = Query(TimeframeEnum.MONTH),
):
    """Topics with recurring negative feedback, plus improvement suggestions."""
    services = get_services(request)
    gaps = services.learning.knowledge_gaps(tenant_id, timeframe.value)
    suggestions = services.learning.improvement_suggestions(tenant_id)

    return KnowledgeGapsResponse(
        tenant_id=tenant_id,
        timeframe=timeframe,
        gaps=[KnowledgeGapModel(**g.to_dict()) for g in gaps],
        suggestions=[SuggestionModel(**s.to_dict()) for s in suggestions],
    )


@router.get("/feedback/similar", response_model=SimilarQuestionsResponse)
async def similar_questions(
    request: Request,
    tenant_id: str = Query(..., min_length=1),
    question: str = Query(..., min_length=1),
    limit: int = Query(5, ge=1, le=20),
):
    """Past questions rated good or helpful that are close to this one."""
    services = get_services(request)
    try:
        similar = await services.learning.similar_questions(tenant_id, question, limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SimilarQuestionsResponse(
        tenant_id=tenant_id,
        question=question,
        similar_questions=[SimilarQuestionModel(**s.to_dict()) for s in similar],
    )
