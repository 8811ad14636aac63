"""
Test doubles shared by the test modules.

- HashingEmbeddingProvider: bag-of-words feature hashing, so texts sharing
  words get similar vectors (deterministic, offline)
- FailingEmbeddingProvider / FlakyEmbeddingProvider: provider outages
- FakeLLMClient / FailingLLMClient: completion doubles that record calls
"""

import hashlib
import math
import re
from typing import List, Optional
from uuid import uuid4

from companion.ai.llm_client import LLMClient, LLMProvider, LLMResponse
from companion.rag.embedder import EmbeddingProvider
from companion.rag.exceptions import ProviderUnavailableError
from companion.rag.models import RetrievalCandidate

WORD_PATTERN = re.compile(r"[a-z]+")


def hashed_vector(text: str, dimensions: int) -> List[float]:
    vector = [0.0] * dimensions
    for word in WORD_PATTERN.findall(text.lower()):
        if len(word) < 3:
            continue
        index = int(hashlib.sha256(word.encode("utf-8")).hexdigest(), 16) % dimensions
        vector[index] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


class HashingEmbeddingProvider(EmbeddingProvider):
    """Offline provider whose similarity tracks shared vocabulary."""

    def __init__(self, dimensions: int = 256, model_id: str = "hashing-test-v1"):
        self.model_id = model_id
        self.dimensions = dimensions
        self.calls: List[List[str]] = []

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [hashed_vector(t, self.dimensions) for t in texts]


class FailingEmbeddingProvider(EmbeddingProvider):
    """Provider that is always down."""

    def __init__(self, dimensions: int = 256, error: Optional[Exception] = None):
        self.model_id = "failing-test-v1"
        self.dimensions = dimensions
        self.error = error or ConnectionError("connection refused")
        self.calls = 0

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls += 1
        raise self.error


class FlakyEmbeddingProvider(HashingEmbeddingProvider):
    """Fails any call containing a text with the poison marker."""

    POISON = "POISON"

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        if any(self.POISON in t for t in texts):
            raise TimeoutError("provider timed out")
        return [hashed_vector(t, self.dimensions) for t in texts]


class WrongCountEmbeddingProvider(HashingEmbeddingProvider):
    """Returns one vector too few."""

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [hashed_vector(t, self.dimensions) for t in texts][:-1]


class WrongSizeEmbeddingProvider(HashingEmbeddingProvider):
    """Returns vectors one element short of its declared dimensions."""

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        return [hashed_vector(t, self.dimensions)[:-1] for t in texts]


class FakeLLMClient(LLMClient):
    """Returns a fixed answer and records every call."""

    def __init__(self, answer: str = "Voltage must stay within 5% of nominal [1]."):
        self.answer = answer
        self.calls: List[dict] = []

    async def generate(self, prompt, system=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls.append({
            "prompt": prompt,
            "system": system,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        return LLMResponse(
            content=self.answer,
            model="fake-llm",
            provider=LLMProvider.OPENAI,
            tokens_input=len(prompt) // 4,
            tokens_output=len(self.answer) // 4,
            cost_usd=0.0,
        )


class FailingLLMClient(LLMClient):
    """Completion provider that is always down."""

    def __init__(self):
        self.calls = 0

    async def generate(self, prompt, system=None, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls += 1
        raise ProviderUnavailableError("openai", "503 Service Unavailable")


def make_candidate(
    score: float = 0.5,
    title: str = "Doc",
    text: str = "Some chunk text",
    document_id=None,
    metadata: Optional[dict] = None,
    uri: str = "",
) -> RetrievalCandidate:
    """Helper to create a retrieval candidate."""
    return RetrievalCandidate(
        chunk_id=uuid4(),
        document_id=document_id or uuid4(),
        text=text,
        score=score,
        title=title,
        uri=uri,
        source_type="manual",
        metadata=metadata or {},
    )
