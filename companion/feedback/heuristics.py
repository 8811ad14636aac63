"""
Feedback Heuristics
===================

Pure scoring and text-processing rules used by feedback learning.
No storage access: everything here works on plain records.
"""

import re
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Union

from .models import FeedbackRecord, FeedbackType, KnowledgeGap, ImprovementSuggestion

# Numeric value of a verdict, used for averages
FEEDBACK_SCORES = {
    FeedbackType.GOOD: 1.0,
    FeedbackType.HELPFUL: 0.7,
    FeedbackType.IRRELEVANT: 0.3,
    FeedbackType.BAD: 0.0,
}
UNKNOWN_FEEDBACK_SCORE = 0.5

# Target a verdict pulls a stored relevance score towards
RELEVANCE_ADJUSTMENTS = {
    FeedbackType.GOOD: 0.8,
    FeedbackType.HELPFUL: 0.7,
    FeedbackType.IRRELEVANT: 0.2,
    FeedbackType.BAD: 0.1,
}
DEFAULT_RELEVANCE = 0.5

TIMEFRAME_DAYS = {
    "week": 7,
    "month": 30,
    "quarter": 90,
}

GAP_STOPWORDS = frozenset({
    "what", "when", "where", "how", "why", "the", "and", "or", "but", "for", "with", "about",
})

MIN_GAP_QUESTION_LENGTH = 10
MIN_TOPIC_LENGTH = 4
MAX_KNOWLEDGE_GAPS = 10
MAX_SOURCE_SUGGESTIONS = 5
MAX_CONTENT_SUGGESTIONS = 3

_NON_LETTERS = re.compile(r"[^a-zA-Z\s]")


def parse_feedback_type(value: Union[str, FeedbackType]) -> FeedbackType:
    """
    Raises:
        ValueError: If the value is not a known feedback type
    """
    if isinstance(value, FeedbackType):
        return value
    try:
        return FeedbackType(value.lower())
    except ValueError:
        valid = ", ".join(t.value for t in FeedbackType)
        raise ValueError(f"Invalid feedback type '{value}'. Expected one of: {valid}") from None


def feedback_score(value: Union[str, FeedbackType, None]) -> float:
    """good 1.0, helpful 0.7, irrelevant 0.3, bad 0.0, anything else 0.5."""
    if isinstance(value, str):
        try:
            value = FeedbackType(value.lower())
        except ValueError:
            return UNKNOWN_FEEDBACK_SCORE
    return FEEDBACK_SCORES.get(value, UNKNOWN_FEEDBACK_SCORE)


def relevance_adjustment(value: Union[str, FeedbackType, None]) -> float:
    if isinstance(value, str):
        try:
            value = FeedbackType(value.lower())
        except ValueError:
            return DEFAULT_RELEVANCE
    return RELEVANCE_ADJUSTMENTS.get(value, DEFAULT_RELEVANCE)


def update_relevance(current: Optional[float], adjustment: float) -> float:
    """Slow moving average for document/chunk relevance after feedback."""
    if current is None:
        current = DEFAULT_RELEVANCE
    return current * 0.9 + adjustment * 0.1


def update_interaction_relevance(current: float, observed: float) -> float:
    """Moving average for a user's personal relevance of a document."""
    return current * 0.7 + observed * 0.3


def timeframe_days(timeframe: str) -> int:
    if timeframe not in TIMEFRAME_DAYS:
        raise ValueError(f"Invalid timeframe '{timeframe}'. Expected one of: {', '.join(TIMEFRAME_DAYS)}")
    return TIMEFRAME_DAYS[timeframe]


def extract_topics(question: str) -> List[str]:
    """
    Candidate topic words of a question.

    Letters only, lowercased, longer than 3 characters, stopwords removed.
    Each word appears once, in order of first occurrence.
    """
    cleaned = _NON_LETTERS.sub("", question).lower()
    topics: List[str] = []
    for word in cleaned.split():
        if len(word) >= MIN_TOPIC_LENGTH and word not in GAP_STOPWORDS and word not in topics:
            topics.append(word)
    return topics


def find_knowledge_gaps(records: Sequence[FeedbackRecord], limit: int = MAX_KNOWLEDGE_GAPS) -> List[KnowledgeGap]:
    """
    Topics seen in at least two distinct questions with some negative feedback.

    Ratio is negative / total feedback mentioning the topic, as a
    percentage rounded to 2 decimals. Sorted by ratio, then question count.
    """
    questions: Dict[str, set] = defaultdict(set)
    totals: Dict[str, int] = defaultdict(int)
    negatives: Dict[str, int] = defaultdict(int)

    for record in records:
        if len(record.question) <= MIN_GAP_QUESTION_LENGTH:
            continue
        for topic in extract_topics(record.question):
            questions[topic].add(record.question)
            totals[topic] += 1
            if record.feedback_type.is_negative:
                negatives[topic] += 1

    gaps = []
    for topic, distinct_questions in questions.items():
        if len(distinct_questions) < 2 or negatives[topic] == 0:
            continue
        gaps.append(KnowledgeGap(
            topic=topic,
            question_count=len(distinct_questions),
            bad_feedback_ratio=round(negatives[topic] / totals[topic] * 100, 2),
            sample_questions=sorted(distinct_questions)[:3],
        ))

    gaps.sort(key=lambda g: (-g.bad_feedback_ratio, -g.question_count, g.topic))
    return gaps[:limit]


def find_source_gaps(records: Sequence[FeedbackRecord], limit: int = MAX_SOURCE_SUGGESTIONS) -> List[ImprovementSuggestion]:
    """Questions asked more than once whose answers were mostly rated negatively."""
    frequency: Dict[str, int] = defaultdict(int)
    negatives: Dict[str, int] = defaultdict(int)
    for record in records:
        frequency[record.question] += 1
        if record.feedback_type.is_negative:
            negatives[record.question] += 1

    gaps = []
    for question, count in frequency.items():
        bad_ratio = negatives[question] / count
        if count > 1 and bad_ratio > 0.5:
            gaps.append((question, count, bad_ratio))

    gaps.sort(key=lambda g: (-g[1], -g[2]))
    return [
        ImprovementSuggestion(
            type="source",
            suggestion=f'Add documentation sources for: "{question}"',
            impact_score=count * bad_ratio,
            data={"question": question, "frequency": count, "bad_ratio": bad_ratio},
        )
        for question, count, bad_ratio in gaps[:limit]
    ]


def find_content_issues(
    records: Sequence[FeedbackRecord],
    relevance: Dict[str, float],
    limit: int = MAX_CONTENT_SUGGESTIONS,
) -> List[ImprovementSuggestion]:
    """
    Documents cited in more than two negatively rated answers.

    Args:
        records: Feedback in the analysis window
        relevance: Current relevance per document id (missing means 0.5)
    """
    negative_counts: Dict[str, int] = defaultdict(int)
    details: Dict[str, dict] = {}
    for record in records:
        if not record.feedback_type.is_negative:
            continue
        for citation in record.citations:
            doc_id = citation.get("doc_id")
            if not doc_id:
                continue
            details.setdefault(doc_id, citation)
        for doc_id in record.document_ids:
            negative_counts[doc_id] += 1

    issues = [(doc_id, count) for doc_id, count in negative_counts.items() if count > 2]
    issues.sort(key=lambda i: (-i[1], i[0]))

    suggestions = []
    for doc_id, count in issues[:limit]:
        citation = details.get(doc_id, {})
        title = citation.get("title") or doc_id
        current_score = relevance.get(doc_id, DEFAULT_RELEVANCE)
        suggestions.append(ImprovementSuggestion(
            type="content",
            suggestion=f'Review and update content in: "{title}"',
            impact_score=count * (1 - current_score),
            data={
                "document_id": doc_id,
                "document_title": title,
                "document_uri": citation.get("uri", ""),
                "negative_feedback_count": count,
                "current_score": current_score,
            },
        ))
    return suggestions
