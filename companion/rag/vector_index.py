"""
Vector Index
============

Storage and similarity search for chunks.

Every read is scoped to a tenant and to one embedding model: chunks with a
null embedding, or whose vector was produced by a different model, are
never returned.

Implementations:
    InMemoryChunkRepository  - Python cosine scan (tests, offline mode)
    PgVectorChunkRepository  - PostgreSQL + pgvector, RLS tenant context
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any, Sequence
from uuid import UUID

from psycopg2.extras import RealDictCursor, Json, execute_values

from ..db import Database
from .embedder import cosine_similarity
from .exceptions import DimensionMismatchError
from .models import (
    Chunk,
    Document,
    EmbeddingTag,
    PendingChunk,
    RetrievalCandidate,
    SearchFilters,
)

logger = logging.getLogger(__name__)


class ChunkRepository(ABC):
    """Persistence for documents and chunks, plus vector search."""

    @abstractmethod
    def search(
        self,
        query_vector: Sequence[float],
        tenant_id: str,
        limit: int,
        embedding_tag: EmbeddingTag,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalCandidate]:
        """
        Top chunks by cosine similarity, highest first.

        Raises:
            DimensionMismatchError: If the query vector does not match the tag
        """

    @abstractmethod
    def get_document(self, tenant_id: str, source_id: str) -> Optional[Document]:
        """Look up a document by its source identifier."""

    @abstractmethod
    def save_document(self, document: Document) -> None:
        """Insert or update a document."""

    @abstractmethod
    def replace_chunks(self, document_id: UUID, chunks: List[Chunk]) -> None:
        """Delete the document's chunks and store the given ones."""

    @abstractmethod
    def set_chunk_embedding(self, chunk_id: UUID, embedding: List[float], tag: EmbeddingTag) -> None:
        """Attach an embedding to a stored chunk."""

    @abstractmethod
    def pending_chunks(self, limit: int = 100) -> List[PendingChunk]:
        """Chunks still without an embedding, oldest first, across tenants."""

    @abstractmethod
    def stats(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        """Document/chunk counts."""


def _check_query_vector(query_vector: Sequence[float], embedding_tag: EmbeddingTag) -> None:
    if len(query_vector) != embedding_tag.dimensions:
        raise DimensionMismatchError(embedding_tag.dimensions, len(query_vector))


def _matches_filters(document: Document, filters: Optional[SearchFilters]) -> bool:
    if filters is None:
        return True
    if filters.source_types and document.source_type not in filters.source_types:
        return False
    if filters.created_after and document.created_at < filters.created_after:
        return False
    if filters.created_before and document.created_at > filters.created_before:
        return False
    return True


class InMemoryChunkRepository(ChunkRepository):
    """Dict-backed repository."""

    def __init__(self):
        self._documents: Dict[UUID, Document] = {}
        self._chunks: Dict[UUID, Chunk] = {}

    def search(
        self,
        query_vector: Sequence[float],
        tenant_id: str,
        limit: int,
        embedding_tag: EmbeddingTag,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalCandidate]:
        _check_query_vector(query_vector, embedding_tag)
        if limit <= 0:
            return []

        candidates = []
        for chunk in self._chunks.values():
            if chunk.embedding is None or chunk.embedding_tag != embedding_tag:
                continue
            document = self._documents.get(chunk.document_id)
            if document is None or document.tenant_id != tenant_id:
                continue
            if not _matches_filters(document, filters):
                continue

            candidates.append(RetrievalCandidate(
                chunk_id=chunk.id,
                document_id=document.id,
                text=chunk.text,
                score=cosine_similarity(query_vector, chunk.embedding),
                title=document.title,
                uri=document.uri,
                source_type=document.source_type,
                metadata={**document.metadata, **chunk.metadata},
            ))

        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates[:limit]

    def get_document(self, tenant_id: str, source_id: str) -> Optional[Document]:
        for document in self._documents.values():
            if document.tenant_id == tenant_id and document.source_id == source_id:
                return document
        return None

    def save_document(self, document: Document) -> None:
        self._documents[document.id] = document

    def replace_chunks(self, document_id: UUID, chunks: List[Chunk]) -> None:
        if document_id not in self._documents:
            raise KeyError(f"Unknown document {document_id}")
        for chunk_id in [cid for cid, c in self._chunks.items() if c.document_id == document_id]:
            del self._chunks[chunk_id]
        for chunk in chunks:
            self._chunks[chunk.id] = chunk

    def set_chunk_embedding(self, chunk_id: UUID, embedding: List[float], tag: EmbeddingTag) -> None:
        if len(embedding) != tag.dimensions:
            raise DimensionMismatchError(tag.dimensions, len(embedding))
        chunk = self._chunks[chunk_id]
        chunk.embedding = list(embedding)
        chunk.embedding_tag = tag

    def pending_chunks(self, limit: int = 100) -> List[PendingChunk]:
        pending = []
        for chunk in self._chunks.values():
            if chunk.embedding is not None:
                continue
            document = self._documents[chunk.document_id]
            pending.append(PendingChunk(chunk_id=chunk.id, tenant_id=document.tenant_id, text=chunk.text))
            if len(pending) >= limit:
                break
        return pending

    def stats(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        documents = [d for d in self._documents.values() if tenant_id is None or d.tenant_id == tenant_id]
        document_ids = {d.id for d in documents}
        chunks = [c for c in self._chunks.values() if c.document_id in document_ids]
        embedded = sum(1 for c in chunks if c.is_embedded)
        return {
            "documents": len(documents),
            "chunks": len(chunks),
            "embedded": embedded,
            "pending": len(chunks) - embedded,
        }


class PgVectorChunkRepository(ChunkRepository):
    """
    pgvector-backed repository.

    Similarity is ``1 - (embedding <=> query)`` (cosine distance operator).
    Tenant reads run inside ``Database.org_context`` so RLS policies apply
    in addition to the explicit tenant predicate.
    """

    def __init__(self, db: Database):
        self.db = db

    def search(
        self,
        query_vector: Sequence[float],
        tenant_id: str,
        limit: int,
        embedding_tag: EmbeddingTag,
        filters: Optional[SearchFilters] = None,
    ) -> List[RetrievalCandidate]:
        _check_query_vector(query_vector, embedding_tag)
        if limit <= 0:
            return []

        vector = list(query_vector)
        conditions = [
            "d.tenant_id = %s",
            "c.embedding IS NOT NULL",
            "c.embedding_model = %s",
            "c.embedding_dimensions = %s",
        ]
        params: List[Any] = [vector, tenant_id, embedding_tag.model_id, embedding_tag.dimensions]

        if filters is not None:
            if filters.source_types:
                conditions.append("d.source_type = ANY(%s)")
                params.append(list(filters.source_types))
            if filters.created_after:
                conditions.append("d.created_at >= %s")
                params.append(filters.created_after)
            if filters.created_before:
                conditions.append("d.created_at <= %s")
                params.append(filters.created_before)

        params.extend([vector, limit])

        sql = f"""
            SELECT
                c.id AS chunk_id,
                c.document_id,
                c.text,
                c.metadata AS chunk_metadata,
                d.title,
                d.uri,
                d.source_type,
                d.metadata AS document_metadata,
                1 - (c.embedding <=> %s::vector) AS similarity
            FROM chunks c
            JOIN documents d ON c.document_id = d.id
            WHERE {' AND '.join(conditions)}
            ORDER BY c.embedding <=> %s::vector
            LIMIT %s
        """

        with self.db.org_context(tenant_id) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()

        results = [
            RetrievalCandidate(
                chunk_id=row["chunk_id"],
                document_id=row["document_id"],
                text=row["text"],
                score=float(row["similarity"]),
                title=row["title"] or "",
                uri=row["uri"] or "",
                source_type=row["source_type"] or "",
                metadata={**(row["document_metadata"] or {}), **(row["chunk_metadata"] or {})},
            )
            for row in rows
        ]

        logger.debug(f"Vector search returned {len(results)} chunks for tenant {tenant_id}")
        return results

    def get_document(self, tenant_id: str, source_id: str) -> Optional[Document]:
        with self.db.org_context(tenant_id) as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT id, tenant_id, source_id, source_type, uri, title, hash, metadata, created_at
                    FROM documents
                    WHERE tenant_id = %s AND source_id = %s
                """, (tenant_id, source_id))
                row = cur.fetchone()

        if not row:
            return None

        return Document(
            id=row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"])),
            tenant_id=row["tenant_id"],
            source_id=row["source_id"],
            source_type=row["source_type"],
            uri=row["uri"] or "",
            title=row["title"] or "",
            hash=row["hash"],
            metadata=row["metadata"] or {},
            created_at=row["created_at"],
        )

    def save_document(self, document: Document) -> None:
        with self.db.org_context(document.tenant_id) as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO documents (
                        id, tenant_id, source_id, source_type, uri, title, hash, metadata, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        source_type = EXCLUDED.source_type,
                        uri = EXCLUDED.uri,
                        title = EXCLUDED.title,
                        hash = EXCLUDED.hash,
                        metadata = EXCLUDED.metadata,
                        updated_at = NOW()
                """, (
                    str(document.id),
                    document.tenant_id,
                    document.source_id,
                    document.source_type,
                    document.uri,
                    document.title,
                    document.hash,
                    Json(document.metadata),
                    document.created_at,
                ))

    def replace_chunks(self, document_id: UUID, chunks: List[Chunk]) -> None:
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM chunks WHERE document_id = %s", (str(document_id),))
                if chunks:
                    execute_values(cur, """
                        INSERT INTO chunks (
                            id, document_id, chunk_index, text, token_count, content_hash, metadata
                        ) VALUES %s
                    """, [
                        (
                            str(chunk.id),
                            str(document_id),
                            chunk.chunk_index,
                            chunk.text,
                            chunk.token_count,
                            chunk.content_hash,
                            Json(chunk.metadata),
                        )
                        for chunk in chunks
                    ])

        # Embeddings computed inline by ingestion are written separately
        for chunk in chunks:
            if chunk.embedding is not None and chunk.embedding_tag is not None:
                self.set_chunk_embedding(chunk.id, chunk.embedding, chunk.embedding_tag)

    def set_chunk_embedding(self, chunk_id: UUID, embedding: List[float], tag: EmbeddingTag) -> None:
        if len(embedding) != tag.dimensions:
            raise DimensionMismatchError(tag.dimensions, len(embedding))
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    UPDATE chunks
                    SET embedding = %s::vector,
                        embedding_model = %s,
                        embedding_dimensions = %s,
                        embedded_at = %s
                    WHERE id = %s
                """, (list(embedding), tag.model_id, tag.dimensions, datetime.now(timezone.utc), str(chunk_id)))

    def pending_chunks(self, limit: int = 100) -> List[PendingChunk]:
        with self.db.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute("""
                    SELECT c.id, d.tenant_id, c.text
                    FROM chunks c
                    JOIN documents d ON c.document_id = d.id
                    WHERE c.embedding IS NULL
                    ORDER BY c.created_at, c.chunk_index
                    LIMIT %s
                """, (limit,))
                rows = cur.fetchall()

        return [
            PendingChunk(
                chunk_id=row["id"] if isinstance(row["id"], UUID) else UUID(str(row["id"])),
                tenant_id=row["tenant_id"],
                text=row["text"],
            )
            for row in rows
        ]

    def stats(self, tenant_id: Optional[str] = None) -> Dict[str, int]:
        where = "WHERE d.tenant_id = %s" if tenant_id else ""
        params = (tenant_id,) if tenant_id else ()
        with self.db.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(f"""
                    SELECT
                        COUNT(DISTINCT d.id),
                        COUNT(c.id),
                        COUNT(c.embedding)
                    FROM documents d
                    LEFT JOIN chunks c ON c.document_id = d.id
                    {where}
                """, params)
                documents, chunks, embedded = cur.fetchone()

        return {
            "documents": documents,
            "chunks": chunks,
            "embedded": embedded,
            "pending": chunks - embedded,
        }
