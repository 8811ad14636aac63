"""
Grounded Answer Service
=======================

Single entry point for answering a question from a tenant's knowledge:

    Embed -> Retrieve -> [Feedback adjust] -> Rerank -> AssembleContext
          -> Complete -> BuildCitations -> ScoreConfidence

Callers always get a GroundedAnswer. Empty retrieval returns a canned
"insufficient knowledge" answer without calling the completion model; any
provider or storage failure returns a canned apology with confidence 0.

Usage:
    service = GroundedAnswerService(embedder, repository, llm)
    answer = await service.generate_grounded_answer(query, tenant_id, user_id)
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..ai.llm_client import LLMClient
from ..feedback.adjuster import FeedbackRelevanceAdjuster
from .citations import build_citations
from .embedder import RAGEmbedder
from .models import AnswerOptions, GroundedAnswer, RetrievalCandidate, SearchFilters
from .prompts import (
    DEGRADED_ANSWER,
    GROUNDED_PROMPT_TEMPLATE,
    INSUFFICIENT_KNOWLEDGE_ANSWER,
    SYSTEM_PROMPT,
)
from .reranker import RerankConfig, rerank
from .vector_index import ChunkRepository

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 30
RETRIEVAL_HEADROOM = 2


def score_confidence(scores: List[float], max_chunks: int) -> float:
    """
    avg(scores) * 0.8 + (len(scores) / max_chunks) * 0.2, clamped to [0, 1].

    Rewards strong matches and having retrieved enough of them.
    """
    if not scores or max_chunks <= 0:
        return 0.0
    average = sum(scores) / len(scores)
    coverage = len(scores) / max_chunks
    return max(0.0, min(1.0, average * 0.8 + coverage * 0.2))


def assemble_context(candidates: List[RetrievalCandidate]) -> str:
    """``[title] text`` per candidate, in rank order."""
    return "\n".join(f"[{c.title}] {c.text}" for c in candidates)


def format_citation_list(candidates: List[RetrievalCandidate]) -> str:
    return "\n".join(
        f"[{i}] {c.title} - {c.uri}" if c.uri else f"[{i}] {c.title}"
        for i, c in enumerate(candidates, 1)
    )


class GroundedAnswerService:
    """
    Orchestrates one grounded answer per call. Holds no per-request state.

    Args:
        embedder: Query embedder
        repository: Tenant-scoped chunk search
        llm: Completion client
        adjuster: Optional feedback adjuster applied before reranking
        rerank_config: Reranker weights
        temperature: Completion temperature
        excerpt_length: Citation span cap
    """

    def __init__(
        self,
        embedder: RAGEmbedder,
        repository: ChunkRepository,
        llm: LLMClient,
        adjuster: Optional[FeedbackRelevanceAdjuster] = None,
        rerank_config: Optional[RerankConfig] = None,
        temperature: float = 0.1,
        excerpt_length: int = 100,
        max_tokens: int = 1024,
    ):
        self.embedder = embedder
        self.repository = repository
        self.llm = llm
        self.adjuster = adjuster
        self.rerank_config = rerank_config or RerankConfig()
        self.temperature = temperature
        self.excerpt_length = excerpt_length
        self.max_tokens = max_tokens

    async def generate_grounded_answer(
        self,
        query: str,
        tenant_id: str,
        user_id: str,
        options: Optional[AnswerOptions] = None,
    ) -> GroundedAnswer:
        """
        Answer a question from the tenant's indexed knowledge.

        Never raises: failures are logged and returned as a degraded answer.
        """
        options = options or AnswerOptions()
        log_context = {"tenant_id": tenant_id, "user_id": user_id}
        start = time.monotonic()

        try:
            return await self._answer(query, tenant_id, user_id, options, log_context, start)
        except Exception as e:
            logger.error(
                f"Grounded answer failed: {type(e).__name__}: {e}",
                extra={**log_context, "stage": "degraded"},
            )
            return GroundedAnswer(answer=DEGRADED_ANSWER, citations=[], retrieved_chunks=0, confidence=0.0)

    async def _answer(
        self,
        query: str,
        tenant_id: str,
        user_id: str,
        options: AnswerOptions,
        log_context: dict,
        start: float,
    ) -> GroundedAnswer:
        if options.max_chunks <= 0:
            raise ValueError("max_chunks must be positive")

        # Embed
        query_embedding = await self.embedder.embed(query)
        if query_embedding.is_mock and self.embedder.provider is not None:
            logger.warning("Query embedded with mock fallback; only mock-tagged chunks can match", extra=log_context)

        # Retrieve
        filters = SearchFilters(source_types=options.source_types)
        if options.include_recent:
            filters.created_after = datetime.now(timezone.utc) - timedelta(days=RECENT_WINDOW_DAYS)

        # Repository and adjuster calls block on the database, so they run in a worker thread
        candidates = await asyncio.to_thread(
            self.repository.search,
            query_embedding.embedding,
            tenant_id,
            limit=options.max_chunks * RETRIEVAL_HEADROOM,
            embedding_tag=query_embedding.tag,
            filters=filters,
        )

        if not candidates:
            logger.info("No chunks retrieved", extra={**log_context, "stage": "retrieve", "chunks": 0})
            return GroundedAnswer(
                answer=INSUFFICIENT_KNOWLEDGE_ANSWER,
                citations=[],
                retrieved_chunks=0,
                confidence=0.0,
            )

        # Feedback adjustment
        if self.adjuster is not None:
            try:
                candidates = await asyncio.to_thread(self.adjuster.apply, tenant_id, user_id, candidates)
            except Exception as e:
                logger.warning(
                    f"Feedback adjustment skipped: {type(e).__name__}: {e}",
                    extra={**log_context, "stage": "adjust"},
                )

        # Rerank
        final = rerank(query, candidates, options.max_chunks, config=self.rerank_config)

        # Assemble context + complete
        prompt = GROUNDED_PROMPT_TEMPLATE.format(
            context=assemble_context(final),
            citations=format_citation_list(final),
            question=query,
        )
        response = await self.llm.generate(
            prompt,
            system=SYSTEM_PROMPT,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        citations = build_citations(final, self.excerpt_length)
        confidence = score_confidence([c.score for c in final], options.max_chunks)

        logger.info(
            f"Answered with {len(final)} chunks",
            extra={
                **log_context,
                "stage": "complete",
                "chunks": len(final),
                "confidence": round(confidence, 4),
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )

        return GroundedAnswer(
            answer=response.content,
            citations=citations,
            retrieved_chunks=len(final),
            confidence=confidence,
        )
