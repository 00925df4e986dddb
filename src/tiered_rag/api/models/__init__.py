"""
API request and response models.
"""

from .knowledge import (
    ContextResponse,
    DocumentStatsResponse,
    ProcessDocumentRequest,
    ProcessDocumentResponse,
    RetrieveContextRequest,
)
from .responses import (
    BaseResponse,
    ErrorResponse,
    HealthStatus,
    SuccessResponse,
    ValidationErrorDetail,
    ValidationErrorResponse,
)

__all__ = [
    "BaseResponse",
    "ContextResponse",
    "DocumentStatsResponse",
    "ErrorResponse",
    "HealthStatus",
    "ProcessDocumentRequest",
    "ProcessDocumentResponse",
    "RetrieveContextRequest",
    "SuccessResponse",
    "ValidationErrorDetail",
    "ValidationErrorResponse",
]
