"""
Health check endpoints for the Tiered RAG API.
"""

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends
import structlog

from tiered_rag import __version__
from tiered_rag.api.dependencies import get_knowledge_service, get_request_id
from tiered_rag.api.models.responses import HealthStatus, SuccessResponse
from tiered_rag.services.knowledge_service import KnowledgeService

logger = structlog.get_logger(__name__)
router = APIRouter()

# Track application start time
_start_time = time.time()


@router.get("", response_model=SuccessResponse[Dict[str, Any]])
async def health_check(
    service: KnowledgeService = Depends(get_knowledge_service),
    request_id=Depends(get_request_id),
):
    """Report the status of the document store and the embedding gateway."""
    start_time = time.time()
    report = await service.health_check()
    response_time = (time.time() - start_time) * 1000

    components = [
        HealthStatus(
            name="document_store",
            status=report["document_store"].get("status", "unknown"),
            details=report["document_store"],
            response_time_ms=response_time,
        ),
        HealthStatus(
            name="embedding_gateway",
            status=report["embedding_gateway"].get("status", "unknown"),
            details=report["embedding_gateway"],
        ),
    ]

    if report["status"] != "healthy":
        logger.warning("Health check reported unhealthy components", request_id=request_id)

    return SuccessResponse[Dict[str, Any]](
        message="Health check completed",
        data={
            "status": report["status"],
            "version": __version__,
            "uptime_seconds": round(time.time() - _start_time, 1),
            "components": [c.model_dump() for c in components],
            "retriever": report["retriever"],
        },
        request_id=request_id,
    )
