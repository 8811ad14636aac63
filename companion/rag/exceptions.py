"""
RAG error taxonomy.

Empty retrieval is not an error: it is a normal branch of the orchestrator.
"""

from typing import Optional

from .models import EmbeddingTag


class RAGError(Exception):
    """Base exception for the retrieval core."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ProviderUnavailableError(RAGError):
    """An embedding or completion provider failed, timed out or is not configured."""

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        self.provider = provider
        self.cause = cause
        super().__init__(f"{provider} unavailable: {message}")


class DimensionMismatchError(RAGError):
    """Two vectors of different lengths were compared. Never coerced."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension mismatch: {expected} != {actual}")


class EmbeddingModelMismatchError(RAGError):
    """Vectors produced by different embedding models were about to be compared."""

    def __init__(self, expected: EmbeddingTag, actual: EmbeddingTag):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding model mismatch: {expected} != {actual}")


class EmbeddingBatchMismatchError(RAGError):
    """The provider returned a different number of vectors than texts sent."""

    def __init__(self, sent: int, received: int):
        self.sent = sent
        self.received = received
        super().__init__(f"Embedding provider returned {received} vectors for {sent} texts")
