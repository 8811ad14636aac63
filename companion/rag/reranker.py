"""
RAG Reranker
============

Cheap, explainable score boosts on top of vector similarity.

Boosts (additive):
- Title match: +0.1 per query token found in a title token (either way round)
- Body match:  +0.05 per query token found in a text token
- Recency:     up to +0.1 for ``metadata["last_modified"]`` within 30 days,
               decaying linearly to 0 at the window edge

Pure: inputs are never mutated and the result only depends on the
arguments (``now`` included).
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Any

from .models import RetrievalCandidate

logger = logging.getLogger(__name__)

STOPWORDS = frozenset({
    "the", "and", "for", "with", "about", "what", "when", "where", "how", "why",
    "are", "is", "was", "were", "this", "that", "these", "those", "from", "into",
    "which", "who", "does", "can", "you", "your", "our", "have", "has", "not",
})

PUNCTUATION = ".,;:!?\"'()[]{}<>`*_-/\\"


@dataclass
class RerankConfig:
    """Boost weights."""
    title_boost: float = 0.1
    body_boost: float = 0.05
    recency_boost: float = 0.1
    recency_window_days: int = 30
    min_token_length: int = 3


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lowercase whitespace tokens with surrounding punctuation stripped, stopwords removed."""
    tokens = []
    for raw in text.lower().split():
        token = raw.strip(PUNCTUATION)
        if len(token) >= min_length and token not in STOPWORDS:
            tokens.append(token)
    return tokens


def count_matches(query_tokens: Sequence[str], target_tokens: Set[str]) -> int:
    """Query tokens that are a substring of, or contain, some target token."""
    matches = 0
    for query_token in query_tokens:
        if any(query_token in target or target in query_token for target in target_tokens):
            matches += 1
    return matches


def parse_timestamp(value: Any) -> Optional[datetime]:
    """datetime or ISO-8601 string to an aware UTC datetime. None if unusable."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def recency_boost(metadata: dict, now: datetime, config: RerankConfig) -> float:
    last_modified = parse_timestamp(metadata.get("last_modified"))
    if last_modified is None:
        return 0.0

    age_days = (now - last_modified).total_seconds() / 86400
    if age_days < 0:
        age_days = 0.0
    if age_days >= config.recency_window_days:
        return 0.0
    return config.recency_boost * (1 - age_days / config.recency_window_days)


def rerank(
    query: str,
    candidates: Sequence[RetrievalCandidate],
    top_k: int,
    config: Optional[RerankConfig] = None,
    now: Optional[datetime] = None,
) -> List[RetrievalCandidate]:
    """
    Rerank candidates and keep the best ``top_k``.

    Args:
        query: User question
        candidates: Retrieval output (any order)
        top_k: Number of candidates to keep
        config: Boost weights
        now: Reference time for the recency boost (defaults to current UTC)

    Returns:
        Copies of the candidates with boosted scores, highest first.
        Ties keep their input order.
    """
    if top_k <= 0 or not candidates:
        return []

    config = config or RerankConfig()
    now = parse_timestamp(now) if now is not None else datetime.now(timezone.utc)
    query_tokens = tokenize(query, config.min_token_length)

    reranked = []
    for candidate in candidates:
        score = candidate.score

        if query_tokens:
            title_tokens = set(tokenize(candidate.title, config.min_token_length))
            text_tokens = set(tokenize(candidate.text, config.min_token_length))
            score += config.title_boost * count_matches(query_tokens, title_tokens)
            score += config.body_boost * count_matches(query_tokens, text_tokens)

        score += recency_boost(candidate.metadata, now, config)
        reranked.append(replace(candidate, score=score))

    reranked.sort(key=lambda c: c.score, reverse=True)

    logger.debug(f"Reranked {len(candidates)} candidates, keeping {min(top_k, len(reranked))}")
    return reranked[:top_k]
