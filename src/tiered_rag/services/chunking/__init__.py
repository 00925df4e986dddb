"""
Document Chunking Services

This package provides text normalisation and paragraph-bounded chunking
with a fixed-width fallback.
"""

from .semantic_chunker import ChunkingConfig, SemanticChunker, chunk_text
from .text_cleaner import clean_text, estimate_tokens, get_text_stats

__all__ = [
    "ChunkingConfig",
    "SemanticChunker",
    "chunk_text",
    "clean_text",
    "estimate_tokens",
    "get_text_stats",
]
