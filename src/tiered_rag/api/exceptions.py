"""
Exception handlers for the Tiered RAG API.

Core errors are rendered with their stable error code and HTTP status;
anything unexpected becomes a generic internal error. Tracebacks are logged,
never returned.
"""

import traceback
from typing import Any, Dict

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import structlog
from starlette.exceptions import HTTPException

from tiered_rag.exceptions import ConfigurationError, TieredRAGError

from .models.responses import ErrorResponse, ValidationErrorDetail, ValidationErrorResponse

logger = structlog.get_logger(__name__)


def error_json_response(content: Dict[str, Any], status_code: int) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(content), status_code=status_code)


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup exception handlers for the FastAPI application."""

    @app.exception_handler(TieredRAGError)
    async def core_exception_handler(request: Request, exc: TieredRAGError) -> JSONResponse:
        """Handle errors raised by the core."""
        request_id = getattr(request.state, "request_id", None)

        log = logger.error if isinstance(exc, ConfigurationError) or exc.status_code >= 500 else logger.warning
        log(
            "Core exception occurred",
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details,
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        error_response = ErrorResponse(
            message=exc.message,
            error_code=exc.error_code,
            error_details=exc.details,
            retryable=exc.retryable,
            request_id=request_id,
        )
        response = error_json_response(error_response.model_dump(), exc.status_code)
        if exc.retryable:
            response.headers["Retry-After"] = "5"
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Handle FastAPI HTTP exceptions."""
        request_id = getattr(request.state, "request_id", None)

        logger.warning(
            "HTTP exception occurred",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=request_id,
            path=request.url.path,
        )

        error_response = ErrorResponse(
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            request_id=request_id,
        )
        return error_json_response(error_response.model_dump(), exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Handle request validation errors."""
        request_id = getattr(request.state, "request_id", None)

        validation_errors = [
            ValidationErrorDetail(
                field=".".join(str(loc) for loc in error["loc"]),
                message=error["msg"],
            )
            for error in exc.errors()
        ]

        logger.warning(
            "Request validation failed",
            validation_errors=[err.model_dump() for err in validation_errors],
            request_id=request_id,
            path=request.url.path,
        )

        error_response = ValidationErrorResponse(
            message="Request validation failed",
            validation_errors=validation_errors,
            request_id=request_id,
        )
        return error_json_response(error_response.model_dump(), status.HTTP_422_UNPROCESSABLE_ENTITY)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        request_id = getattr(request.state, "request_id", None)

        logger.error(
            "Unexpected exception occurred",
            error=str(exc),
            error_type=type(exc).__name__,
            request_id=request_id,
            path=request.url.path,
            method=request.method,
            traceback=traceback.format_exc(),
        )

        error_response = ErrorResponse(
            message="An unexpected error occurred",
            error_code="INTERNAL_SERVER_ERROR",
            request_id=request_id,
        )
        return error_json_response(error_response.model_dump(), status.HTTP_500_INTERNAL_SERVER_ERROR)
