"""
Error taxonomy for the Tiered RAG core.

Every error that crosses the package boundary derives from TieredRAGError and
carries a stable machine-readable code, a human-readable message, the HTTP
status it maps to and whether the caller may retry.
"""

from typing import Any, Dict, Optional


class TieredRAGError(Exception):
    """Base exception for core errors."""

    error_code: str = "INTERNAL_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise the error without internal state."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(TieredRAGError):
    """Bad input shape, e.g. an empty query or malformed identifier."""

    error_code = "VALIDATION_ERROR"
    status_code = 400


class ConfigurationError(TieredRAGError):
    """Missing credentials, unknown model or unreachable provider configuration."""

    error_code = "CONFIGURATION_ERROR"
    status_code = 500


class ServiceUnavailable(TieredRAGError):
    """A dependency failed transiently and the retry budget is exhausted."""

    error_code = "SERVICE_UNAVAILABLE"
    status_code = 503
    retryable = True

    def __init__(
        self,
        message: str = "Embedding service is temporarily unavailable, please retry later",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)


class IntegrityError(TieredRAGError):
    """Vector dimension or count mismatch between chunks and embeddings."""

    error_code = "INTEGRITY_ERROR"
    status_code = 500


class DocumentStoreError(TieredRAGError):
    """The document store or one of its indexes failed."""

    error_code = "DOCUMENT_STORE_ERROR"
    status_code = 503
