"""
RAG Chunker
===========

Splits documents into overlapping chunks for embedding.

Rules:
- Chunk size: up to 600 tokens (estimated at 4 characters per token)
- Overlap: ~100 tokens of trailing words carried into the next chunk
- Sentence boundaries (., !, ?) are respected; a sentence too long to sit
  next to the overlap (max - overlap tokens) is hard-split on word
  boundaries, so no chunk exceeds the budget
- Chunks under 50 characters are dropped
- Stable chunking (same input = same chunks)
"""

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import Chunk, Document

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MIN_CHUNK_CHARS = 50

# Share of overlap tokens expressed as words (a word is ~1.33 tokens)
OVERLAP_WORDS_PER_TOKEN = 0.75

SENTENCE_PATTERN = re.compile(r"[^.!?]+(?:[.!?]+|$)")
CODE_BLOCK_PATTERN = re.compile(r"```[\s\S]*?```|`[^`]+`")
CODE_PLACEHOLDER = "__CODE_BLOCK_{}__"


def estimate_tokens(text: str) -> int:
    """Estimate token count for text. Monotonic in length."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_sentences(text: str) -> List[str]:
    """Split text on terminal punctuation, keeping the punctuation and normalizing whitespace."""
    sentences = []
    for match in SENTENCE_PATTERN.finditer(text):
        sentence = " ".join(match.group(0).split())
        if sentence:
            sentences.append(sentence)
    return sentences


def _split_oversized(sentence: str, max_tokens: int) -> List[str]:
    """Hard-split a sentence that alone exceeds the chunk budget. Words are never cut."""
    pieces = []
    current = ""
    for word in sentence.split(" "):
        candidate = f"{current} {word}" if current else word
        if current and estimate_tokens(candidate) > max_tokens:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def _tail_words(text: str, overlap_tokens: int) -> str:
    """Trailing words of a chunk carried over as overlap."""
    if overlap_tokens <= 0:
        return ""
    target_words = math.ceil(overlap_tokens * OVERLAP_WORDS_PER_TOKEN)
    return " ".join(text.split(" ")[-target_words:])


def _fit_overlap(overlap: str, unit: str, max_tokens: int) -> str:
    """Drop leading overlap words until overlap + unit fits the budget."""
    words = overlap.split(" ") if overlap else []
    while words and estimate_tokens(" ".join(words + [unit])) > max_tokens:
        words.pop(0)
    return " ".join(words)


def chunk_text(text: str, max_tokens: int = 600, overlap_tokens: int = 100) -> List[str]:
    """
    Split text into overlapping, token-bounded chunks.

    Args:
        text: Raw document text
        max_tokens: Estimated token budget per chunk
        overlap_tokens: Estimated tokens of trailing context repeated at the
            start of the following chunk

    Returns:
        Chunks in document order

    Raises:
        ValueError: If max_tokens is not positive or overlap_tokens is not
            smaller than max_tokens
    """
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive")
    if overlap_tokens < 0 or overlap_tokens >= max_tokens:
        raise ValueError("overlap_tokens must be >= 0 and smaller than max_tokens")

    # Leave room for the overlap so every chunk stays within max_tokens
    unit_budget = max_tokens - overlap_tokens

    units: List[str] = []
    for sentence in split_sentences(text):
        if estimate_tokens(sentence) > unit_budget:
            units.extend(_split_oversized(sentence, unit_budget))
        else:
            units.append(sentence)

    chunks: List[str] = []
    buffer = ""

    for unit in units:
        if buffer and estimate_tokens(f"{buffer} {unit}") > max_tokens:
            chunks.append(buffer)
            overlap = _fit_overlap(_tail_words(buffer, overlap_tokens), unit, max_tokens)
            buffer = f"{overlap} {unit}" if overlap else unit
        else:
            buffer = f"{buffer} {unit}" if buffer else unit

    if buffer:
        chunks.append(buffer)

    return [chunk for chunk in chunks if len(chunk) >= MIN_CHUNK_CHARS]


def extract_code_blocks(text: str) -> Tuple[str, List[str]]:
    """
    Replace fenced and inline code with placeholders so sentence splitting
    cannot cut through it.

    Returns:
        Tuple of (text with placeholders, code blocks in placeholder order)
    """
    code_blocks: List[str] = []

    def _replace(match: re.Match) -> str:
        code_blocks.append(match.group(0))
        return CODE_PLACEHOLDER.format(len(code_blocks) - 1)

    return CODE_BLOCK_PATTERN.sub(_replace, text), code_blocks


def restore_code_blocks(text: str, code_blocks: List[str]) -> str:
    """Put code blocks back in place of their placeholders."""
    result = text
    for index, code in enumerate(code_blocks):
        result = result.replace(CODE_PLACEHOLDER.format(index), code)
    return result


def hash_content(content: str) -> str:
    """SHA256 digest used for change detection and deduplication."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class ChunkConfig:
    """Chunking configuration."""
    max_tokens: int = 600
    overlap_tokens: int = 100
    preserve_code_blocks: bool = True


class RAGChunker:
    """
    Turns a document's content into Chunk records (without embeddings).
    """

    def __init__(self, config: Optional[ChunkConfig] = None):
        self.config = config or ChunkConfig()

    def chunk_document(self, document: Document, content: str) -> List[Chunk]:
        """
        Split a document into chunks.

        Args:
            document: Parent document (provides id and metadata)
            content: Full text to chunk

        Returns:
            List of Chunk objects with token counts and content hashes
        """
        if not content.strip():
            logger.warning(f"Empty document: {document.title}")
            return []

        code_blocks: List[str] = []
        if self.config.preserve_code_blocks:
            content, code_blocks = extract_code_blocks(content)

        texts = chunk_text(content, self.config.max_tokens, self.config.overlap_tokens)

        result = []
        for i, text in enumerate(texts):
            if code_blocks:
                text = restore_code_blocks(text, code_blocks)
            result.append(Chunk(
                document_id=document.id,
                chunk_index=i,
                text=text,
                token_count=estimate_tokens(text),
                content_hash=hash_content(text),
                metadata={**document.metadata, "chunk_index": i},
            ))

        logger.info(f"Chunked '{document.title}' into {len(result)} chunks")
        return result
