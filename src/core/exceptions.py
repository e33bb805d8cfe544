"""
Global Exception Handling

Provides the error taxonomy of the upload queue and the FastAPI handlers
that render it as structured JSON responses.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from src.core.logging import get_logger, job_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class CompanionError(Exception):
    """Base exception for the web companion service."""

    default_reason = "internal_error"

    def __init__(
        self,
        message: str,
        code: int = 500,
        reason: Optional[str] = None,
        job_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.reason = reason or self.default_reason
        self.job_id = job_id or job_id_var.get()
        self.details = details or {}
        super().__init__(self.message)


class BadRequestError(CompanionError):
    """Raised when a required field is missing or invalid."""

    default_reason = "invalid_request"

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class UnsupportedMediaTypeError(CompanionError):
    """Raised when an upload does not declare an image media type."""

    default_reason = "unsupported_media_type"

    def __init__(self, content_type: Optional[str], **kwargs):
        super().__init__("Only image uploads are supported", code=415, **kwargs)
        self.details["content_type"] = content_type


class PayloadTooLargeError(CompanionError):
    """Raised when an upload exceeds the configured size limit."""

    default_reason = "payload_too_large"

    def __init__(self, size: int, limit: int, **kwargs):
        super().__init__(
            f"File exceeds {limit // (1024 * 1024)}MB limit",
            code=413,
            **kwargs
        )
        self.details["size"] = size
        self.details["limit"] = limit


class NotFoundError(CompanionError):
    """Raised when an upload id is unknown."""

    default_reason = "not_found"

    def __init__(self, message: str = "Upload not found", **kwargs):
        super().__init__(message, code=404, **kwargs)


class InvalidTransitionError(CompanionError):
    """Raised when a status change would move a job backwards or out of a terminal state."""

    default_reason = "invalid_transition"

    def __init__(self, current: str, target: str, **kwargs):
        super().__init__(
            f"Cannot move upload from '{current}' to '{target}'",
            code=409,
            **kwargs
        )
        self.details["current_status"] = current
        self.details["target_status"] = target


class InternalError(CompanionError):
    """Raised for unexpected failures."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class StorageError(InternalError):
    """Raised when blob storage operations fail."""

    default_reason = "storage_failed"


class JobStoreError(InternalError):
    """Raised when the job store (Redis) cannot be read or written."""

    default_reason = "job_store_failed"


class BackgroundRemovalError(InternalError):
    """Raised when the background removal stage fails or times out."""

    default_reason = "background_removal_failed"


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(
    message: Any,
    code: int,
    reason: str,
    job_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "reason": reason,
        "code": code,
        "job_id": job_id,
        "details": details or {},
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(CompanionError)
    async def companion_exception_handler(request: Request, exc: CompanionError):
        log = logger.error if exc.code >= 500 else logger.warning
        log(
            "companion_exception",
            error=exc.message,
            code=exc.code,
            reason=exc.reason,
            path=str(request.url.path),
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(exc.message, exc.code, exc.reason, exc.job_id, exc.details)
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]

        logger.warning(
            "request_validation_failed",
            path=str(request.url.path),
            fields=fields
        )

        return JSONResponse(
            status_code=400,
            content=_error_body(
                "Missing or invalid fields",
                400,
                "invalid_request",
                details={"fields": fields}
            )
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc.detail, exc.status_code, "http_error", job_id_var.get())
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content=_error_body("Internal server error", 500, "internal_error", job_id_var.get())
        )
