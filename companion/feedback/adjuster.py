"""
Feedback-Weighted Relevance Adjuster
====================================

Rescales retrieval scores with what the organization and the user have
said about each document before.

    adjusted = base * clamp(org_factor * user_factor * personal_factor, 0.1, 2.0)

- org_factor:      org feedback average blended with the stored document
                   relevance, scaled into [0.4, 0.8]
- user_factor:     the user's own feedback average, scaled into [0.6, 1.0]
- personal_factor: access-frequency bonus (max +30%) plus a signed
                   personal-relevance term, clamped to [0.7, 1.5]

Each factor is 1.0 when its data is missing, so a document without any
history keeps its base score exactly.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from ..rag.models import RetrievalCandidate
from .heuristics import DEFAULT_RELEVANCE
from .models import AdjustedScore, DocumentInteraction, FeedbackStats, ScoredDocument
from .repository import FeedbackRepository

logger = logging.getLogger(__name__)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class AdjusterConfig:
    """Factor ranges and weights."""
    lookback_days: int = 90

    org_feedback_weight: float = 0.6
    org_relevance_weight: float = 0.4
    org_min: float = 0.4
    org_max: float = 0.8

    user_min: float = 0.6
    user_max: float = 1.0

    frequency_step: float = 0.05
    frequency_cap: float = 0.3
    personal_relevance_weight: float = 0.4
    personal_min: float = 0.7
    personal_max: float = 1.5

    total_min: float = 0.1
    total_max: float = 2.0


def org_factor(stats: Optional[FeedbackStats], document_relevance: float, config: AdjusterConfig) -> float:
    if stats is None or stats.count == 0:
        return 1.0
    blended = stats.avg_score * config.org_feedback_weight + document_relevance * config.org_relevance_weight
    return config.org_min + _clamp(blended, 0.0, 1.0) * (config.org_max - config.org_min)


def user_factor(stats: Optional[FeedbackStats], config: AdjusterConfig) -> float:
    if stats is None or stats.count == 0:
        return 1.0
    return config.user_min + _clamp(stats.avg_score, 0.0, 1.0) * (config.user_max - config.user_min)


def personal_factor(interaction: Optional[DocumentInteraction], config: AdjusterConfig) -> float:
    if interaction is None:
        return 1.0
    frequency_bonus = min(interaction.access_frequency * config.frequency_step, config.frequency_cap)
    relevance_term = (interaction.relevance_score - 0.5) * config.personal_relevance_weight
    return _clamp(1.0 + frequency_bonus + relevance_term, config.personal_min, config.personal_max)


class FeedbackRelevanceAdjuster:
    """
    Applies feedback history to retrieval scores.

    Repository reads are batched: four queries per call regardless of the
    number of candidates.
    """

    def __init__(self, repository: FeedbackRepository, config: Optional[AdjusterConfig] = None):
        self.repository = repository
        self.config = config or AdjusterConfig()

    def adjust_scores(
        self,
        tenant_id: str,
        user_id: str,
        candidates: Sequence[ScoredDocument],
        now: Optional[datetime] = None,
    ) -> List[AdjustedScore]:
        """
        Adjust and re-sort candidate scores.

        Returns:
            One AdjustedScore per candidate, highest first (stable on ties)
        """
        if not candidates:
            return []

        since = (now or datetime.now(timezone.utc)) - timedelta(days=self.config.lookback_days)
        doc_ids = list(dict.fromkeys(c.doc_id for c in candidates))

        org_stats = self.repository.org_feedback_stats(tenant_id, doc_ids, since)
        user_stats = self.repository.user_feedback_stats(tenant_id, user_id, doc_ids, since)
        relevance = self.repository.document_relevance(tenant_id, doc_ids)
        interactions = self.repository.user_interactions(tenant_id, user_id, doc_ids)

        factors: Dict[str, float] = {}
        for doc_id in doc_ids:
            factor = (
                org_factor(org_stats.get(doc_id), relevance.get(doc_id, DEFAULT_RELEVANCE), self.config)
                * user_factor(user_stats.get(doc_id), self.config)
                * personal_factor(interactions.get(doc_id), self.config)
            )
            factors[doc_id] = _clamp(factor, self.config.total_min, self.config.total_max)

        adjusted = [
            AdjustedScore(
                doc_id=c.doc_id,
                chunk_id=c.chunk_id,
                adjusted_score=c.base_score * factors[c.doc_id],
                factor=factors[c.doc_id],
            )
            for c in candidates
        ]
        adjusted.sort(key=lambda a: a.adjusted_score, reverse=True)

        changed = sum(1 for f in factors.values() if f != 1.0)
        logger.debug(f"Feedback adjustment: {changed}/{len(doc_ids)} documents reweighted")
        return adjusted

    def apply(
        self,
        tenant_id: str,
        user_id: str,
        candidates: Sequence[RetrievalCandidate],
        now: Optional[datetime] = None,
    ) -> List[RetrievalCandidate]:
        """Retrieval candidates with adjusted scores, highest first."""
        scored = [
            ScoredDocument(doc_id=str(c.document_id), chunk_id=str(c.chunk_id), base_score=c.score)
            for c in candidates
        ]
        by_chunk = {str(c.chunk_id): c for c in candidates}

        return [
            replace(by_chunk[a.chunk_id], score=a.adjusted_score)
            for a in self.adjust_scores(tenant_id, user_id, scored, now=now)
        ]
