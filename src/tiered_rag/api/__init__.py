"""
API package for Tiered RAG.

This package contains the FastAPI application exposing document ingestion,
context retrieval and tenant statistics.
"""

from .app import create_app

__all__ = ["create_app"]
