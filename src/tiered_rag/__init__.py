"""
Tiered RAG

The retrieval and ranking core of a multi-tenant RAG backend that:
- Chunks company documents at paragraph boundaries with overlap
- Uses OpenAI embedding models for vectorization
- Stores chunks in memory, in a SQL database or in ChromaDB
- Scopes knowledge by tenant and by tier (global, scoped, shared)
- Ranks context with hybrid semantic + keyword search
"""

__version__ = "0.1.0"
__author__ = "Tiered RAG Team"

# Package metadata
__title__ = "tiered-rag"
__description__ = "Multi-tenant hybrid retrieval core for tiered company knowledge"
__license__ = "MIT"
