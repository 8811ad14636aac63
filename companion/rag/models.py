"""
RAG Data Models
===============

Dataclasses shared by chunking, retrieval, reranking and answering.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any
from uuid import UUID, uuid4


@dataclass(frozen=True)
class EmbeddingTag:
    """Identifies the model that produced a vector. Vectors are only comparable under equal tags."""
    model_id: str
    dimensions: int

    def __str__(self) -> str:
        return f"{self.model_id}@{self.dimensions}"


@dataclass
class Document:
    """A source document owned by a tenant."""
    tenant_id: str
    source_id: str
    uri: str
    title: str
    hash: str

    id: UUID = field(default_factory=uuid4)
    source_type: str = "manual"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Chunk:
    """A bounded span of document text, the unit of embedding and retrieval."""
    document_id: UUID
    chunk_index: int
    text: str
    token_count: int
    content_hash: str

    id: UUID = field(default_factory=uuid4)

    # Populated asynchronously; None until the embedding job completes
    embedding: Optional[List[float]] = None
    embedding_tag: Optional[EmbeddingTag] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None


@dataclass
class PendingChunk:
    """A chunk still waiting for its embedding, as handed to the backfill worker."""
    chunk_id: UUID
    tenant_id: str
    text: str


@dataclass
class SearchFilters:
    """Optional retrieval filters. The tenant filter is not optional and lives on the call itself."""
    source_types: Optional[List[str]] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None


@dataclass
class RetrievalCandidate:
    """
    A chunk retrieved for a single query.

    ``score`` starts as the raw cosine similarity and is the only field
    later stages change (they return updated copies).
    """
    chunk_id: UUID
    document_id: UUID
    text: str
    score: float
    title: str = ""
    uri: str = ""
    source_type: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Citation:
    """Caller-facing reference back to a source chunk."""
    doc_id: str
    chunk_id: str
    uri: str
    title: str
    span: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "doc_id": self.doc_id,
            "chunk_id": self.chunk_id,
            "uri": self.uri,
            "title": self.title,
            "span": self.span,
            "score": round(self.score, 4),
        }


@dataclass
class AnswerOptions:
    """Options for a grounded answer request."""
    max_chunks: int = 12
    include_recent: bool = False
    source_types: Optional[List[str]] = None


@dataclass
class GroundedAnswer:
    """Response of the grounded-answer orchestrator. Same shape on success and degradation."""
    answer: str
    citations: List[Citation] = field(default_factory=list)
    retrieved_chunks: int = 0
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "citations": [c.to_dict() for c in self.citations],
            "retrieved_chunks": self.retrieved_chunks,
            "confidence": round(self.confidence, 4),
        }
