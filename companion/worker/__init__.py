"""
Worker Module
=============

Background embedding backfill.
"""

from .embedding_worker import (
    EmbeddingBackfillJob,
    EmbeddingWorkerScheduler,
    BackfillResult,
    BackfillStatus,
    RunHistory,
)

__all__ = [
    "EmbeddingBackfillJob",
    "EmbeddingWorkerScheduler",
    "BackfillResult",
    "BackfillStatus",
    "RunHistory",
]
