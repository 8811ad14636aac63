"""
RAG Ingestion Pipeline
======================

Pipeline for ingesting documents into a tenant's knowledge base.

Flow:
1. Hash content (unchanged documents are skipped)
2. Chunk
3. Embed in batches (failed items stay pending for the backfill worker)
4. Replace the document's chunks
5. Store the content hash (a run that fails earlier is redone on retry)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional
from uuid import UUID

from .chunker import RAGChunker, hash_content
from .embedder import RAGEmbedder
from .models import Document
from .vector_index import ChunkRepository

logger = logging.getLogger(__name__)


@dataclass
class IngestionResult:
    """Outcome of one document ingestion."""
    document_id: UUID
    status: str  # created | updated | unchanged
    chunks_created: int = 0
    chunks_embedded: int = 0
    chunks_failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": str(self.document_id),
            "status": self.status,
            "chunks_created": self.chunks_created,
            "chunks_embedded": self.chunks_embedded,
            "chunks_failed": self.chunks_failed,
        }


class DocumentIngestion:
    """
    Ingestion pipeline.

    Handles:
    - Change detection by content hash
    - Chunking
    - Embedding generation
    - Chunk replacement on update
    """

    def __init__(
        self,
        repository: ChunkRepository,
        embedder: RAGEmbedder,
        chunker: Optional[RAGChunker] = None,
    ):
        self.repository = repository
        self.embedder = embedder
        self.chunker = chunker or RAGChunker()

        self._documents_ingested = 0
        self._documents_unchanged = 0
        self._chunks_created = 0
        self._chunks_pending = 0

    async def ingest_document(
        self,
        tenant_id: str,
        source_id: str,
        uri: str,
        title: str,
        content: str,
        source_type: str = "manual",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestionResult:
        """
        Ingest or refresh a single document.

        Args:
            tenant_id: Owning tenant
            source_id: Stable identifier of the document within its source
            uri: Link shown in citations
            title: Document title (used in context and reranking)
            content: Full text
            source_type: Source kind (manual, upload, web, ...)
            metadata: Copied onto every chunk (e.g. last_modified)

        Returns:
            IngestionResult
        """
        content_hash = hash_content(content)
        existing = self.repository.get_document(tenant_id, source_id)

        if existing is not None and existing.hash == content_hash:
            self._documents_unchanged += 1
            logger.info(f"Document unchanged, skipping: {title}", extra={"tenant_id": tenant_id})
            return IngestionResult(document_id=existing.id, status="unchanged")

        # The new hash is only stored once the chunks are, so a failed run is retried
        if existing is not None:
            document = existing
            document.uri = uri
            document.title = title
            document.source_type = source_type
            document.metadata = dict(metadata or {})
            status = "updated"
        else:
            document = Document(
                tenant_id=tenant_id,
                source_id=source_id,
                uri=uri,
                title=title,
                hash="",
                source_type=source_type,
                metadata=dict(metadata or {}),
            )
            status = "created"

        self.repository.save_document(document)

        chunks = self.chunker.chunk_document(document, content)
        if not chunks:
            logger.warning(f"No chunks generated for document {document.id}")

        items = await self.embedder.embed_batch([c.text for c in chunks]) if chunks else []

        embedded = 0
        failed: List[int] = []
        for chunk, item in zip(chunks, items):
            if item.ok:
                chunk.embedding = item.result.embedding
                chunk.embedding_tag = item.result.tag
                embedded += 1
            else:
                failed.append(chunk.chunk_index)

        self.repository.replace_chunks(document.id, chunks)

        document.hash = content_hash
        self.repository.save_document(document)

        if failed:
            logger.warning(f"{len(failed)} chunks left pending embedding for {document.id}: {failed}")

        self._documents_ingested += 1
        self._chunks_created += len(chunks)
        self._chunks_pending += len(failed)

        logger.info(
            f"Ingested document {document.id} ({status}): {title}",
            extra={"tenant_id": tenant_id, "document_id": str(document.id), "chunks": len(chunks)},
        )

        return IngestionResult(
            document_id=document.id,
            status=status,
            chunks_created=len(chunks),
            chunks_embedded=embedded,
            chunks_failed=len(failed),
        )

    @property
    def stats(self) -> Dict[str, Any]:
        """Ingestion statistics."""
        return {
            "documents_ingested": self._documents_ingested,
            "documents_unchanged": self._documents_unchanged,
            "chunks_created": self._chunks_created,
            "chunks_pending": self._chunks_pending,
            "embedder": self.embedder.stats,
        }
