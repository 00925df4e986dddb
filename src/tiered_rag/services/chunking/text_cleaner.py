"""
Text normalisation helpers used before chunking.
"""

import math
import re
from typing import Optional

from tiered_rag.models.knowledge import TextStats

_LINE_BREAKS = re.compile(r"\r\n?")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_INLINE_WHITESPACE = re.compile(r"[ \t]+")
_PARAGRAPH_SPLIT = re.compile(r"\n{2,}")


def clean_text(text: Optional[str]) -> str:
    """
    Normalise extracted document text.

    Line endings become ``\\n``, runs of three or more newlines collapse to a
    blank line, runs of spaces and tabs collapse to one space and every line
    is stripped.

    Args:
        text: Raw extracted text

    Returns:
        Cleaned text, empty when the input is None or blank
    """
    if not text:
        return ""

    text = _LINE_BREAKS.sub("\n", text)
    text = _INLINE_WHITESPACE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Rough token estimate of four characters per token."""
    return math.ceil(len(text) / 4) if text else 0


def get_text_stats(text: Optional[str]) -> TextStats:
    if not text:
        return TextStats()

    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]
    return TextStats(
        characters=len(text),
        words=len(text.split()),
        lines=len(text.split("\n")),
        paragraphs=len(paragraphs),
        estimated_tokens=estimate_tokens(text),
    )
