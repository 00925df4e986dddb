"""
Request and response models for the knowledge endpoints.

Tenant and scope owner identifiers are UUIDs at the HTTP boundary; the core
works with their string form.
"""

from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from tiered_rag.api.models.responses import SuccessResponse
from tiered_rag.models.knowledge import (
    ContextResult,
    DocumentStats,
    KnowledgeTier,
    ProcessDocumentResult,
    RetrievalConfig,
)


class ProcessDocumentRequest(BaseModel):
    """Ingest extracted document text into one scope."""

    text: str = Field(..., description="Extracted plain text of the document")
    tenant_id: UUID = Field(..., description="Owning tenant")
    knowledge_tier: KnowledgeTier = Field(..., description="Knowledge tier of the document")
    scope_owner_id: Optional[UUID] = Field(None, description="Scope owner, required for the scoped tier")
    file_name: Optional[str] = Field(None, max_length=255, description="Source file name")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Metadata copied onto every chunk")


class RetrieveContextRequest(BaseModel):
    """Retrieve ranked context for a chat query."""

    query: str = Field(..., description="Natural-language query")
    tenant_id: UUID = Field(..., description="Tenant whose knowledge is searched")
    scope_owner_id: Optional[UUID] = Field(None, description="Consumer whose scoped knowledge is visible")
    config: Optional[RetrievalConfig] = Field(
        None, description="Retrieval settings; omitted fields take the deployment defaults",
    )


class ProcessDocumentResponse(SuccessResponse[ProcessDocumentResult]):
    """Ingestion result."""


class ContextResponse(SuccessResponse[ContextResult]):
    """Ranked chunks and rendered context."""


class DocumentStatsResponse(SuccessResponse[DocumentStats]):
    """Per-tier statistics for a tenant."""
