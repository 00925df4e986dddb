"""
Paragraph-Bounded Text Chunking

This module splits document text into overlapping chunks that end on
paragraph boundaries. When the paragraph structure produces chunks whose
average size is far from the target (one huge paragraph, or hundreds of tiny
ones) the text is re-chunked with fixed-width sliding windows instead.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

from tiered_rag.config import ChunkingSettings
from tiered_rag.exceptions import ValidationError

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
_PARAGRAPH_SPLIT = re.compile(r"\n{2,}")


@dataclass
class ChunkingConfig:
    """Configuration for text chunking."""

    target_size: int = 1000  # Target chunk size in characters
    overlap: int = 100  # Characters carried over into the next chunk
    min_average_ratio: float = 0.5  # Below target * ratio the fixed fallback is used
    max_average_ratio: float = 2.0  # Above target * ratio the fixed fallback is used

    @classmethod
    def from_settings(cls, settings: ChunkingSettings) -> "ChunkingConfig":
        return cls(
            target_size=settings.target_size,
            overlap=settings.overlap,
            min_average_ratio=settings.min_average_ratio,
            max_average_ratio=settings.max_average_ratio,
        )


class SemanticChunker:
    """Paragraph-aware chunker with a fixed-width fallback."""

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()

    def chunk(
        self,
        text: Optional[str],
        target_size: Optional[int] = None,
        overlap: Optional[int] = None,
    ) -> List[str]:
        """
        Split text into chunk texts.

        Args:
            text: Document text, usually already cleaned
            target_size: Override for the configured target size
            overlap: Override for the configured overlap

        Returns:
            Ordered, non-empty, stripped chunk texts; empty for blank input

        Raises:
            ValidationError: If target_size is smaller than one character or
                overlap is negative
        """
        target_size = self.config.target_size if target_size is None else target_size
        overlap = self.config.overlap if overlap is None else overlap

        if target_size < 1:
            raise ValidationError(
                "Chunk target size must be at least 1 character",
                details={"target_size": target_size},
            )
        if overlap < 0:
            raise ValidationError(
                "Chunk overlap must not be negative",
                details={"overlap": overlap},
            )

        if not text or not text.strip():
            return []

        chunks = self.semantic_chunk(text, target_size, overlap)
        if chunks:
            average = sum(len(c) for c in chunks) / len(chunks)
            lower = target_size * self.config.min_average_ratio
            upper = target_size * self.config.max_average_ratio
            if lower <= average <= upper:
                logger.debug(f"Semantic chunking produced {len(chunks)} chunks, avg size {average:.0f}")
                return chunks

        logger.debug("Falling back to fixed-size chunking")
        return self.fixed_chunk(text, target_size, overlap)

    def semantic_chunk(self, text: str, target_size: int, overlap: int) -> List[str]:
        """Accumulate paragraphs until the next one would overflow the target."""
        paragraphs = [p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]

        chunks: List[str] = []
        buffer = ""

        for paragraph in paragraphs:
            if buffer and len(buffer) + len(paragraph) > target_size:
                closed = buffer.strip()
                if closed:
                    chunks.append(closed)
                buffer = closed[-overlap:] if overlap > 0 and len(closed) > overlap else ""

            buffer = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}" if buffer else paragraph

        remainder = buffer.strip()
        if remainder:
            chunks.append(remainder)

        return chunks

    def fixed_chunk(self, text: str, target_size: int, overlap: int) -> List[str]:
        """Slide a window of target_size characters over the text."""
        step = target_size - max(overlap, 0)
        if step <= 0:
            step = target_size

        chunks: List[str] = []
        start = 0
        length = len(text)

        while start < length:
            piece = text[start:start + target_size].strip()
            if piece:
                chunks.append(piece)
            if start + target_size >= length:
                break
            start += step

        return chunks


def chunk_text(text: Optional[str], target_size: int = 1000, overlap: int = 100) -> List[str]:
    """Chunk text with default fallback ratios."""
    return SemanticChunker().chunk(text, target_size=target_size, overlap=overlap)
