"""
RAG Embedder
============

Generates embeddings through a pluggable provider (OpenAI
text-embedding-3-large by default, 3072 dimensions).

- Input is whitespace-normalized and truncated to 8000 characters.
- Without credentials, or when the provider fails for a single text, a
  deterministic mock vector is produced. Every vector is tagged with the
  model that produced it so mock and real vectors are never compared.
- Batches are capped at 10 texts per provider call with a delay between
  calls; failures are reported per item.
"""

import asyncio
import hashlib
import logging
import math
import os
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import openai

from ..cache import RedisCache
from .exceptions import (
    RAGError,
    ProviderUnavailableError,
    DimensionMismatchError,
    EmbeddingBatchMismatchError,
    EmbeddingModelMismatchError,
)
from .models import EmbeddingTag

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 8000
MAX_BATCH_SIZE = 10
MOCK_MODEL_ID = "mock-embedding-v1"


def normalize_text(text: str) -> str:
    """Collapse whitespace and cut to the provider-safe input length."""
    return " ".join(text.split())[:MAX_INPUT_CHARS]


def mock_embedding(text: str, dimensions: int) -> List[float]:
    """
    Deterministic stand-in embedding.

    Gaussian components from a PRNG seeded by the SHA256 of the text,
    L2-normalized. Same text gives a bit-identical vector across processes.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = random.Random(seed)
    vector = [rng.gauss(0.0, 1.0) for _ in range(dimensions)]
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Raises:
        DimensionMismatchError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return max(-1.0, min(1.0, similarity))


def embedding_cache_key(tag: EmbeddingTag, text: str) -> str:
    """Cache key for a text embedded by a given model. Different models never share keys."""
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
    return f"emb:{tag.model_id}:{tag.dimensions}:{digest}"


@dataclass
class EmbeddingResult:
    """Result of embedding generation."""
    embedding: List[float]
    model: str
    dimensions: int
    is_mock: bool = False

    @property
    def tag(self) -> EmbeddingTag:
        return EmbeddingTag(self.model, self.dimensions)

    def similarity(self, other: "EmbeddingResult") -> float:
        """
        Cosine similarity with another embedding of the same model.

        Raises:
            EmbeddingModelMismatchError: If the two were produced by different models
        """
        if self.tag != other.tag:
            raise EmbeddingModelMismatchError(self.tag, other.tag)
        return cosine_similarity(self.embedding, other.embedding)


@dataclass
class BatchEmbeddingItem:
    """Per-item outcome of a batch call. Exactly one of result/error is set."""
    index: int
    text: str
    result: Optional[EmbeddingResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.result is not None


class EmbeddingProvider(ABC):
    """External embedding model."""

    model_id: str
    dimensions: int

    @property
    def tag(self) -> EmbeddingTag:
        return EmbeddingTag(self.model_id, self.dimensions)

    @abstractmethod
    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, returning one vector per text in input order."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI embeddings.

    Cost: ~$0.00013 per 1K tokens (text-embedding-3-large)
    Max input: 8191 tokens
    """

    PRICE_PER_1K_TOKENS = 0.00013

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "text-embedding-3-large",
        dimensions: int = 3072,
        timeout: float = 30.0,
    ):
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key required for embeddings")

        self.model_id = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._client: Optional[openai.AsyncOpenAI] = None
        self._total_tokens = 0

    @property
    def client(self) -> openai.AsyncOpenAI:
        if self._client is None:
            self._client = openai.AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        response = await self.client.embeddings.create(
            model=self.model_id,
            input=texts,
            dimensions=self.dimensions,
        )
        self._total_tokens += response.usage.total_tokens
        logger.debug(f"Embedded {len(texts)} texts ({response.usage.total_tokens} tokens)")
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    @property
    def estimated_cost(self) -> float:
        """Estimated cost in USD."""
        return (self._total_tokens / 1000) * self.PRICE_PER_1K_TOKENS


class RAGEmbedder:
    """
    Embedding front-end used by ingestion, the worker and the orchestrator.

    Args:
        provider: External model. None means offline mode (mock vectors only).
        dimensions: Vector size in offline mode (ignored when a provider is set)
        cache: Optional embedding cache for real vectors
        batch_size: Max texts per provider call (1-10)
        batch_delay: Seconds to wait between provider calls in a batch
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        dimensions: int = 3072,
        cache: Optional[RedisCache] = None,
        batch_size: int = MAX_BATCH_SIZE,
        batch_delay: float = 1.0,
        cache_ttl_hours: int = 24 * 7,
    ):
        if not 0 < batch_size <= MAX_BATCH_SIZE:
            raise ValueError(f"batch_size must be between 1 and {MAX_BATCH_SIZE}")

        self.provider = provider
        self.dimensions = provider.dimensions if provider else dimensions
        self.cache = cache
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.cache_ttl_hours = cache_ttl_hours

        self._total_requests = 0
        self._fallbacks = 0
        self._cache_hits = 0

        if provider is None:
            logger.warning("No embedding provider configured - using deterministic mock embeddings")

    @property
    def tag(self) -> EmbeddingTag:
        """Tag of vectors produced on the normal (non-fallback) path."""
        return self.provider.tag if self.provider else self.mock_tag

    @property
    def mock_tag(self) -> EmbeddingTag:
        return EmbeddingTag(MOCK_MODEL_ID, self.dimensions)

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for a single text.

        Falls back to a mock vector (tagged as such) if the provider fails.

        Raises:
            ValueError: If the text is empty after normalization
            DimensionMismatchError: If the provider returns a wrongly sized vector
        """
        normalized = normalize_text(text)
        if not normalized:
            raise ValueError("Cannot embed empty text")

        if self.provider is None:
            return self._mock_result(normalized)

        cached = self._cache_get(normalized)
        if cached is not None:
            return cached

        try:
            vector = (await self._call_provider([normalized]))[0]
        except ProviderUnavailableError as e:
            self._fallbacks += 1
            logger.warning(f"Embedding provider failed, using mock embedding: {e}")
            return self._mock_result(normalized)

        return self._real_result(normalized, vector)

    async def embed_batch(self, texts: Sequence[str]) -> List[BatchEmbeddingItem]:
        """
        Generate embeddings for multiple texts.

        Output order matches input order 1:1. Items that fail on a real
        provider carry an error instead of a mock vector, so they can be
        retried later.

        Raises:
            EmbeddingBatchMismatchError: If the provider returns a different
                number of vectors than texts sent
        """
        items = [BatchEmbeddingItem(index=i, text=normalize_text(t)) for i, t in enumerate(texts)]

        pending: List[BatchEmbeddingItem] = []
        for item in items:
            if not item.text:
                item.error = "Cannot embed empty text"
            elif self.provider is None:
                item.result = self._mock_result(item.text)
            else:
                cached = self._cache_get(item.text)
                if cached is not None:
                    item.result = cached
                else:
                    pending.append(item)

        for start in range(0, len(pending), self.batch_size):
            if start > 0 and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            await self._embed_group(pending[start:start + self.batch_size])

        failed = sum(1 for item in items if not item.ok)
        logger.info(f"Batch embedding complete: {len(items) - failed} successful, {failed} failed")
        return items

    async def _embed_group(self, group: List[BatchEmbeddingItem]) -> None:
        """Embed one provider-sized group; on failure retry each item alone."""
        try:
            vectors = await self._call_provider([item.text for item in group])
        except ProviderUnavailableError as e:
            if len(group) == 1:
                group[0].error = str(e)
                return
            logger.warning(f"Batch of {len(group)} failed ({e}); retrying items individually")
            for item in group:
                try:
                    vector = (await self._call_provider([item.text]))[0]
                except ProviderUnavailableError as item_error:
                    item.error = str(item_error)
                    continue
                item.result = self._real_result(item.text, vector)
            return

        for item, vector in zip(group, vectors):
            item.result = self._real_result(item.text, vector)

    async def _call_provider(self, texts: List[str]) -> List[List[float]]:
        self._total_requests += 1
        try:
            vectors = await self.provider.embed_texts(texts)
        except RAGError:
            raise
        except Exception as e:
            raise ProviderUnavailableError(self.provider.model_id, str(e), cause=e) from e

        if len(vectors) != len(texts):
            raise EmbeddingBatchMismatchError(len(texts), len(vectors))
        for vector in vectors:
            if len(vector) != self.provider.dimensions:
                raise DimensionMismatchError(self.provider.dimensions, len(vector))
        return vectors

    def _mock_result(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(
            embedding=mock_embedding(text, self.dimensions),
            model=MOCK_MODEL_ID,
            dimensions=self.dimensions,
            is_mock=True,
        )

    def _real_result(self, text: str, vector: List[float]) -> EmbeddingResult:
        result = EmbeddingResult(
            embedding=list(vector),
            model=self.provider.model_id,
            dimensions=self.provider.dimensions,
        )
        if self.cache is not None:
            self.cache.set(embedding_cache_key(result.tag, text), result.embedding, ttl_hours=self.cache_ttl_hours)
        return result

    def _cache_get(self, text: str) -> Optional[EmbeddingResult]:
        if self.cache is None:
            return None
        vector = self.cache.get(embedding_cache_key(self.tag, text))
        if vector is None or len(vector) != self.dimensions:
            return None
        self._cache_hits += 1
        return EmbeddingResult(embedding=vector, model=self.tag.model_id, dimensions=self.dimensions)

    @property
    def stats(self) -> dict:
        return {
            "model": str(self.tag),
            "provider_requests": self._total_requests,
            "mock_fallbacks": self._fallbacks,
            "cache_hits": self._cache_hits,
        }
