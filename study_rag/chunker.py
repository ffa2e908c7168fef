"""
Text chunking module for splitting resource text into overlapping,
token-bounded segments ready for embedding.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union, Any

from .exceptions import ChunkingError

logger = logging.getLogger(__name__)

# Rough estimate for English text
CHARS_PER_TOKEN = 4

# How far past the tentative end we look for a sentence or word boundary
SENTENCE_LOOKAHEAD = 100
WORD_LOOKAHEAD = 20

WHITESPACE_PATTERN = re.compile(r'\s+')


@dataclass
class TextChunk:
    """A chunk of resource text, not yet embedded."""
    content: str
    chunk_id: str
    resource_id: str
    source: str
    start_char: int
    end_char: int
    ordinal: int
    total_chunks: int
    metadata: dict = field(default_factory=dict)


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to single spaces and trim."""
    return WHITESPACE_PATTERN.sub(' ', text).strip()


def split_into_chunks(
    text: str,
    target_token_count: int = 1000,
    overlap_tokens: int = 200
) -> List[str]:
    """
    Split text into chunks of roughly target_token_count tokens.

    Args:
        text: Text to split
        target_token_count: Target number of tokens per chunk
        overlap_tokens: Number of tokens shared by consecutive chunks

    Returns:
        Ordered list of chunk strings (empty if the text is blank)
    """
    return [chunk for chunk, _, _ in _split_with_offsets(text, target_token_count, overlap_tokens)]


def _split_with_offsets(
    text: str,
    target_token_count: int,
    overlap_tokens: int
) -> List[Tuple[str, int, int]]:
    """
    Core sliding-window splitter.

    Returns:
        List of (content, start_char, end_char) tuples, offsets into the normalized text
    """
    if not isinstance(text, str):
        raise ChunkingError(f"Expected text, got {type(text).__name__}")
    if target_token_count < 1:
        raise ChunkingError(f"target_token_count must be positive, got {target_token_count}")
    if overlap_tokens < 0:
        raise ChunkingError(f"overlap_tokens must not be negative, got {overlap_tokens}")

    target_chars = target_token_count * CHARS_PER_TOKEN
    overlap_chars = overlap_tokens * CHARS_PER_TOKEN

    clean_text = normalize_text(text)
    text_length = len(clean_text)

    if text_length <= target_chars:
        return [(clean_text, 0, text_length)] if clean_text else []

    if overlap_chars >= target_chars:
        logger.warning(
            f"Overlap ({overlap_tokens} tokens) is not smaller than target "
            f"({target_token_count} tokens); windows advance without overlap when stuck"
        )

    chunks = []
    start = 0

    while start < text_length:
        end = start + target_chars

        if end >= text_length:
            end = text_length
        else:
            end = _find_break_point(clean_text, end)

        chunk_text = clean_text[start:end].strip()
        if chunk_text:
            chunks.append((chunk_text, start, end))

        if end >= text_length:
            break

        # Move start with overlap; must always move forward
        next_start = max(end - overlap_chars, 0)
        if next_start <= start:
            next_start = end
        start = next_start

    return chunks


def _find_break_point(text: str, end: int) -> int:
    """Snap the tentative end past a nearby period, else to a nearby space."""
    next_period = text.find('.', end)
    if next_period != -1 and next_period < end + SENTENCE_LOOKAHEAD:
        return next_period + 1

    next_space = text.find(' ', end)
    if next_space != -1 and next_space < end + WORD_LOOKAHEAD:
        return next_space

    return end


class TextChunker:
    """
    Splits resource text into chunks for embedding and retrieval.
    Sizes are expressed in (estimated) tokens.
    """

    def __init__(
        self,
        config_or_target: Union[int, Any] = 1000,
        overlap_tokens: int = 200
    ):
        """
        Initialize the text chunker.

        Args:
            config_or_target: ChunkingConfig object or target tokens per chunk
            overlap_tokens: Tokens shared between consecutive chunks
        """
        # Handle ChunkingConfig object or int
        if hasattr(config_or_target, 'target_token_count'):
            self.target_token_count = config_or_target.target_token_count
            self.overlap_tokens = config_or_target.overlap_tokens
        else:
            self.target_token_count = config_or_target
            self.overlap_tokens = overlap_tokens

        if self.target_token_count < 1 or self.overlap_tokens < 0:
            raise ChunkingError(
                f"Invalid chunk sizes: target={self.target_token_count}, "
                f"overlap={self.overlap_tokens}"
            )

    def chunk_document(
        self,
        content: str,
        resource_id: str,
        source: str,
        metadata: Optional[dict] = None
    ) -> List[TextChunk]:
        """
        Split resource content into chunks.

        Args:
            content: Extracted resource text
            resource_id: Owning resource identifier
            source: Resource source reference (URL, path or "inline")
            metadata: Additional metadata copied onto every chunk

        Returns:
            List of TextChunk objects in document order
        """
        if not content or not content.strip():
            logger.warning(f"Empty content for resource {resource_id}")
            return []

        metadata = metadata or {}
        raw_chunks = _split_with_offsets(content, self.target_token_count, self.overlap_tokens)

        chunks = []
        total_chunks = len(raw_chunks)

        for idx, (text, start, end) in enumerate(raw_chunks):
            chunks.append(TextChunk(
                content=text,
                chunk_id=f"{resource_id}_chunk_{idx}",
                resource_id=resource_id,
                source=source,
                start_char=start,
                end_char=end,
                ordinal=idx,
                total_chunks=total_chunks,
                metadata={
                    **metadata,
                    'index': idx,
                    'length': len(text),
                    'total_chunks': total_chunks,
                    'target_token_count': self.target_token_count,
                }
            ))

        logger.debug(f"Created {len(chunks)} chunks from resource {resource_id}")
        return chunks
