"""Text chunking with overlap for RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
"""
from dataclasses import dataclass
from typing import List, Optional

import structlog

from docrag.errors import InvalidConfig

logger = structlog.get_logger()


@dataclass(frozen=True)
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


@dataclass(frozen=True)
class Chunk:
    """A section chunk ready for (or carrying) its embedding."""

    id: str
    title: str
    source_id: Optional[str]
    text: str
    embedding: Optional[List[float]] = None

    def to_record(self) -> dict:
        """Serialize in the embedded-chunks file format."""
        return {
            "id": self.id,
            "title": self.title,
            "url": self.source_id,
            "content": self.text,
            "embedding": self.embedding,
        }


def chunk_id(section_index: int, chunk_index: int) -> str:
    """Build the positional id of a chunk, e.g. ``doc-0-chunk-2``.

    Ids depend only on position, so editing or reordering the document
    reuses ids for different content.
    """
    return f"doc-{section_index}-chunk-{chunk_index}"


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    """Reject parameters that would never advance through the text.

    Raises:
        InvalidConfig: If size is not positive, overlap is negative or
            overlap >= size
    """
    if chunk_size <= 0:
        raise InvalidConfig(f"Chunk size must be positive, got {chunk_size}")
    if chunk_overlap < 0:
        raise InvalidConfig(f"Chunk overlap must not be negative, got {chunk_overlap}")
    if chunk_overlap >= chunk_size:
        raise InvalidConfig(
            f"Overlap ({chunk_overlap}) must be less than "
            f"chunk size ({chunk_size})"
        )


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(self, chunk_size: int, chunk_overlap: int):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters
            chunk_overlap: Overlap between consecutive chunks in characters

        Raises:
            InvalidConfig: If the parameters are inconsistent
        """
        validate_chunking(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

        logger.debug(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    @property
    def step(self) -> int:
        return self.chunk_size - self.chunk_overlap

    def chunk_text(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Windows start at 0, size, ... advancing by ``size - overlap``; the
        last window is clipped to the end of the text.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects (empty for empty text)
        """
        if not text:
            return []

        text_length = len(text)
        chunks = []

        for chunk_index, start in enumerate(range(0, text_length, self.step)):
            end = min(start + self.chunk_size, text_length)
            chunks.append(
                TextChunk(
                    content=text[start:end],
                    char_start=start,
                    char_end=end,
                    chunk_index=chunk_index,
                )
            )

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
        )

        return chunks


def chunk_text(text: str, size: int, overlap: int) -> List[str]:
    """Chunk text with the given parameters (convenience function).

    Args:
        text: Text to chunk
        size: Chunk size in characters
        overlap: Overlap in characters

    Returns:
        List of chunk strings

    Raises:
        InvalidConfig: If overlap >= size
    """
    return [chunk.content for chunk in TextChunker(size, overlap).chunk_text(text)]
