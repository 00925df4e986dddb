"""
Knowledge API endpoints.

This module exposes document ingestion, context retrieval and per-tenant
statistics over HTTP. The routes are thin adapters; validation, ranking and
error semantics live in the knowledge service.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
import structlog

from tiered_rag.api.dependencies import get_knowledge_service, get_request_id
from tiered_rag.api.models.knowledge import (
    ContextResponse,
    DocumentStatsResponse,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
    RetrieveContextRequest,
)
from tiered_rag.models.knowledge import RetrievalConfig
from tiered_rag.services.knowledge_service import KnowledgeService

logger = structlog.get_logger(__name__)
router = APIRouter()


def _optional_str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


def _merged_config(service: KnowledgeService, overrides: Optional[RetrievalConfig]) -> Optional[RetrievalConfig]:
    """Fields set in the request win; the rest come from the deployment defaults."""
    if overrides is None:
        return None
    return service.default_retrieval_config().model_copy(update=overrides.model_dump(exclude_unset=True))


@router.post("/documents/process", response_model=ProcessDocumentResponse)
async def process_document(
    request: ProcessDocumentRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
    request_id: Optional[str] = Depends(get_request_id),
):
    """
    Chunk, embed and store a document, replacing the previous chunks of its scope.

    The scope is the (tenant, tier, scope owner) triple of the request.
    """
    logger.info(
        "Document processing requested",
        tenant_id=str(request.tenant_id),
        knowledge_tier=request.knowledge_tier.value,
        scope_owner_id=_optional_str(request.scope_owner_id),
        characters=len(request.text),
        request_id=request_id,
    )

    result = await service.process_document(
        text=request.text,
        tenant_id=str(request.tenant_id),
        knowledge_tier=request.knowledge_tier,
        scope_owner_id=_optional_str(request.scope_owner_id),
        metadata=request.metadata,
        file_name=request.file_name,
    )

    return ProcessDocumentResponse(
        message=f"Document processed into {result.chunks_created} chunks",
        data=result,
        request_id=request_id,
    )


@router.post("/context/retrieve", response_model=ContextResponse)
async def retrieve_context(
    request: RetrieveContextRequest,
    service: KnowledgeService = Depends(get_knowledge_service),
    request_id: Optional[str] = Depends(get_request_id),
):
    """Retrieve ranked, formatted context for a chat query."""
    result = await service.search_context(
        query_text=request.query,
        tenant_id=str(request.tenant_id),
        scope_owner_id=_optional_str(request.scope_owner_id),
        config=_merged_config(service, request.config),
    )

    return ContextResponse(
        message=f"Found {result.total_found} relevant chunks",
        data=result,
        request_id=request_id,
    )


@router.get("/tenants/{tenant_id}/stats", response_model=DocumentStatsResponse)
async def get_tenant_stats(
    tenant_id: UUID,
    service: KnowledgeService = Depends(get_knowledge_service),
    request_id: Optional[str] = Depends(get_request_id),
):
    """Per-tier chunk counts and character totals for a tenant."""
    stats = await service.get_stats(str(tenant_id))
    return DocumentStatsResponse(
        message="Document statistics retrieved",
        data=stats,
        request_id=request_id,
    )
