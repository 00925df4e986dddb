"""
Dependency functions for FastAPI routes.
"""

from typing import Optional

from fastapi import Request

from tiered_rag.exceptions import ConfigurationError
from tiered_rag.services.knowledge_service import KnowledgeService


def get_knowledge_service(request: Request) -> KnowledgeService:
    """Knowledge service attached to the application at startup."""
    service = getattr(request.app.state, "knowledge_service", None)
    if service is None:
        raise ConfigurationError("Knowledge service is not initialized")
    return service


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)
