"""
Citation builder: one citation per ranked candidate, rank order preserved.
"""

from typing import List, Sequence

from .models import Citation, RetrievalCandidate

ELLIPSIS = "..."


def excerpt(text: str, max_length: int) -> str:
    """Cut text to at most ``max_length`` characters, ending in '...' when cut."""
    if len(text) <= max_length:
        return text
    if max_length <= len(ELLIPSIS):
        return text[:max_length]
    return text[:max_length - len(ELLIPSIS)].rstrip() + ELLIPSIS


def build_citations(candidates: Sequence[RetrievalCandidate], excerpt_length: int = 100) -> List[Citation]:
    """
    Build citations for the final ranked candidates.

    No filtering happens here: every candidate becomes a citation.
    """
    if excerpt_length <= 0:
        raise ValueError("excerpt_length must be positive")

    return [
        Citation(
            doc_id=str(candidate.document_id),
            chunk_id=str(candidate.chunk_id),
            uri=candidate.uri,
            title=candidate.title,
            span=excerpt(candidate.text, excerpt_length),
            score=candidate.score,
        )
        for candidate in candidates
    ]
