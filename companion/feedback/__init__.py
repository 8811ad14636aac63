"""
Feedback Module
===============

Feedback-weighted relevance and the learning loop that feeds it.

Usage:
    from companion.feedback import FeedbackLearning, FeedbackRelevanceAdjuster
    from companion.feedback import InMemoryFeedbackRepository

    repository = InMemoryFeedbackRepository()
    adjuster = FeedbackRelevanceAdjuster(repository)
"""

from .adjuster import FeedbackRelevanceAdjuster, AdjusterConfig
from .learning import FeedbackLearning
from .models import (
    FeedbackType,
    InteractionType,
    FeedbackRecord,
    FeedbackStats,
    DocumentInteraction,
    ScoredDocument,
    AdjustedScore,
    KnowledgeGap,
    ImprovementSuggestion,
    SimilarQuestion,
)
from .repository import (
    FeedbackRepository,
    InMemoryFeedbackRepository,
    PostgresFeedbackRepository,
)

__all__ = [
    "FeedbackRelevanceAdjuster",
    "AdjusterConfig",
    "FeedbackLearning",
    "FeedbackType",
    "InteractionType",
    "FeedbackRecord",
    "FeedbackStats",
    "DocumentInteraction",
    "ScoredDocument",
    "AdjustedScore",
    "KnowledgeGap",
    "ImprovementSuggestion",
    "SimilarQuestion",
    "FeedbackRepository",
    "InMemoryFeedbackRepository",
    "PostgresFeedbackRepository",
]
