"""
Service Wiring
==============

Builds the explicitly constructed components (database pool, cache,
embedder, repositories, completion client) from settings. The API, the CLI
and the worker all start from ``build_services``.

Without DATABASE_ENABLED the repositories are in-memory; without an OpenAI
key embeddings are deterministic mock vectors; without any completion key
``llm`` is None and answers degrade at the completion step.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .ai.llm_client import LLMClient, UnconfiguredLLMClient, get_llm_client
from .cache import RedisCache
from .config import Settings
from .db import Database
from .feedback.adjuster import FeedbackRelevanceAdjuster
from .feedback.learning import FeedbackLearning
from .feedback.repository import (
    FeedbackRepository,
    InMemoryFeedbackRepository,
    PostgresFeedbackRepository,
)
from .rag.chunker import ChunkConfig, RAGChunker
from .rag.embedder import OpenAIEmbeddingProvider, RAGEmbedder
from .rag.grounded_answer import GroundedAnswerService
from .rag.ingestion import DocumentIngestion
from .rag.vector_index import ChunkRepository, InMemoryChunkRepository, PgVectorChunkRepository

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived components shared by request handlers."""
    settings: Settings
    embedder: RAGEmbedder
    chunks: ChunkRepository
    feedback: FeedbackRepository
    ingestion: DocumentIngestion
    learning: FeedbackLearning
    adjuster: Optional[FeedbackRelevanceAdjuster]
    answers: GroundedAnswerService
    llm: Optional[LLMClient] = None
    db: Optional[Database] = None
    cache: Optional[RedisCache] = None

    def close(self) -> None:
        if self.cache is not None:
            self.cache.close()
        if self.db is not None:
            self.db.close()


def build_embedder(settings: Settings, cache: Optional[RedisCache] = None) -> RAGEmbedder:
    provider = None
    if settings.openai.api_key:
        provider = OpenAIEmbeddingProvider(
            api_key=settings.openai.api_key,
            model=settings.openai.embedding_model,
            dimensions=settings.openai.embedding_dimensions,
            timeout=settings.openai.request_timeout,
        )

    return RAGEmbedder(
        provider,
        dimensions=settings.openai.embedding_dimensions,
        cache=cache,
        batch_size=settings.retrieval.embedding_batch_size,
        batch_delay=settings.retrieval.embedding_batch_delay,
        cache_ttl_hours=settings.redis.embedding_ttl_hours,
    )


def build_llm(settings: Settings) -> Optional[LLMClient]:
    """Completion client for the configured (or auto-detected) provider, None if no key is set."""
    provider = settings.llm_provider
    if provider is None:
        if settings.openai.api_key:
            provider = "openai"
        elif settings.anthropic.api_key:
            provider = "anthropic"
        else:
            logger.warning("No completion provider configured - grounded answers will degrade")
            return None

    model = settings.anthropic.model if provider == "anthropic" else settings.openai.llm_model
    return get_llm_client(provider, model)


def build_services(
    settings: Settings,
    llm: Optional[LLMClient] = None,
    embedder: Optional[RAGEmbedder] = None,
) -> Services:
    """
    Wire every component from settings.

    Args:
        settings: Application settings
        llm: Completion client override (tests, alternative providers)
        embedder: Embedder override
    """
    db = Database(settings.database) if settings.database.enabled else None
    cache = RedisCache(redis_url=settings.redis.url, prefix=settings.redis.prefix) if settings.redis.url else None

    if db is not None:
        chunks: ChunkRepository = PgVectorChunkRepository(db)
        feedback: FeedbackRepository = PostgresFeedbackRepository(db)
    else:
        logger.info("Database disabled - using in-memory repositories")
        chunks = InMemoryChunkRepository()
        feedback = InMemoryFeedbackRepository()

    embedder = embedder or build_embedder(settings, cache)
    chunker = RAGChunker(ChunkConfig(
        max_tokens=settings.retrieval.chunk_max_tokens,
        overlap_tokens=settings.retrieval.chunk_overlap_tokens,
    ))
    adjuster = FeedbackRelevanceAdjuster(feedback) if settings.retrieval.personalize else None

    llm = llm or build_llm(settings)
    answers = GroundedAnswerService(
        embedder,
        chunks,
        llm or UnconfiguredLLMClient(),
        adjuster=adjuster,
        temperature=settings.retrieval.completion_temperature,
        excerpt_length=settings.retrieval.excerpt_length,
    )

    return Services(
        settings=settings,
        embedder=embedder,
        chunks=chunks,
        feedback=feedback,
        ingestion=DocumentIngestion(chunks, embedder, chunker),
        learning=FeedbackLearning(feedback, embedder),
        adjuster=adjuster,
        llm=llm,
        answers=answers,
        db=db,
        cache=cache,
    )
