"""
RAG Module
==========

Retrieval core of the knowledge companion.

Architecture:
- Sentence-aware chunking with overlap
- Pluggable embeddings (OpenAI text-embedding-3-large), tagged per model
- Tenant-scoped vector search (pgvector or in-memory)
- Heuristic reranking and feedback-weighted relevance
- Grounded answers with citations and confidence
  (see companion.rag.grounded_answer)
"""

from .chunker import RAGChunker, ChunkConfig, chunk_text
from .citations import build_citations
from .embedder import (
    RAGEmbedder,
    EmbeddingProvider,
    OpenAIEmbeddingProvider,
    EmbeddingResult,
    BatchEmbeddingItem,
    cosine_similarity,
    mock_embedding,
)
from .ingestion import DocumentIngestion, IngestionResult
from .models import (
    EmbeddingTag,
    Document,
    Chunk,
    RetrievalCandidate,
    SearchFilters,
    Citation,
    AnswerOptions,
    GroundedAnswer,
)
from .reranker import rerank, RerankConfig
from .vector_index import ChunkRepository, InMemoryChunkRepository, PgVectorChunkRepository

__all__ = [
    "RAGChunker",
    "ChunkConfig",
    "chunk_text",
    "build_citations",
    "RAGEmbedder",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "EmbeddingResult",
    "BatchEmbeddingItem",
    "cosine_similarity",
    "mock_embedding",
    "DocumentIngestion",
    "IngestionResult",
    "EmbeddingTag",
    "Document",
    "Chunk",
    "RetrievalCandidate",
    "SearchFilters",
    "Citation",
    "AnswerOptions",
    "GroundedAnswer",
    "rerank",
    "RerankConfig",
    "ChunkRepository",
    "InMemoryChunkRepository",
    "PgVectorChunkRepository",
]
