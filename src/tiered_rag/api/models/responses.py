"""
Base response models for the Tiered RAG API.

This module defines the response envelope shared by every endpoint so that
successes and errors have the same outer shape.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar('T')


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseResponse(BaseModel):
    """Base response model for all API responses."""

    success: bool = Field(..., description="Whether the request was successful")
    message: str = Field(..., description="Human-readable message")
    timestamp: datetime = Field(default_factory=_utc_now, description="Response timestamp")
    request_id: Optional[str] = Field(None, description="Unique request identifier")


class SuccessResponse(BaseResponse, Generic[T]):
    """Success response with data payload."""

    success: bool = Field(True, description="Always true for success responses")
    data: T = Field(..., description="Response data payload")


class ErrorResponse(BaseResponse):
    """Error response with error details."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "success": False,
                "message": "Query text must not be empty",
                "error_code": "VALIDATION_ERROR",
                "error_details": {},
                "retryable": False,
                "timestamp": "2024-01-01T12:00:00Z",
                "request_id": "req_123456789",
            }
        }
    )

    success: bool = Field(False, description="Always false for error responses")
    error_code: str = Field(..., description="Machine-readable error code")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    retryable: bool = Field(False, description="Whether the caller may retry the request")


class ValidationErrorDetail(BaseModel):
    """Validation error detail."""

    field: str = Field(..., description="Field name that failed validation")
    message: str = Field(..., description="Validation error message")


class ValidationErrorResponse(ErrorResponse):
    """Validation error response with field-specific details."""

    error_code: str = Field("VALIDATION_ERROR", description="Always VALIDATION_ERROR")
    validation_errors: List[ValidationErrorDetail] = Field(..., description="List of validation errors")


class HealthStatus(BaseModel):
    """Health check status for a service component."""

    name: str = Field(..., description="Component name")
    status: str = Field(..., description="Component status (healthy/unhealthy)")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional status details")
    response_time_ms: Optional[float] = Field(None, description="Response time in milliseconds")
