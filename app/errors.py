"""
Archive error taxonomy and response formatting.

Every failure the archive core can raise derives from APIError so the HTTP
layer renders it in one consistent format. Upstream failures carry a generic
public message; their detail is only logged.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.logging_config import get_logger
from app.monitoring import capture_exception

logger = get_logger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation (caller's fault)
# ---------------------------------------------------------------------------

class ValidationError(APIError):
    """Validation error."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: str = "VALIDATION_ERROR",
        status_code: int = status.HTTP_400_BAD_REQUEST,
    ):
        super().__init__(message=message, code=code, status_code=status_code, details=details)


class UnsupportedContentType(ValidationError):
    def __init__(self, content_type: str):
        super().__init__(
            message=f"Unsupported content type: {content_type}",
            code="UNSUPPORTED_CONTENT_TYPE",
            details={"content_type": content_type},
        )


class EmptyPayload(ValidationError):
    def __init__(self):
        super().__init__(message="Payload is empty", code="EMPTY_PAYLOAD")


class InvalidContent(ValidationError):
    """Raised by the content store when handed bytes it cannot accept."""

    def __init__(self, message: str = "Content is empty or unreadable"):
        super().__init__(message=message, code="INVALID_CONTENT")


class PayloadTooLarge(ValidationError):
    def __init__(self, size: int, limit: int):
        super().__init__(
            message=f"Payload of {size} bytes exceeds the {limit} byte limit",
            code="PAYLOAD_TOO_LARGE",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"size": size, "limit": limit},
        )


class InvalidOwnerOrCommunity(ValidationError):
    def __init__(self, message: str = "Owner or associated community does not exist"):
        super().__init__(message=message, code="INVALID_OWNER_OR_COMMUNITY")


class InvalidCursor(ValidationError):
    def __init__(self):
        super().__init__(message="Pagination cursor is malformed", code="INVALID_CURSOR")


# ---------------------------------------------------------------------------
# Authentication / authorization
# ---------------------------------------------------------------------------

class AuthenticationError(APIError):
    """Authentication error."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class AccessDenied(APIError):
    """
    Authorization failure.

    The message is identical for private, nonexistent and unauthenticated
    cases; the internal reason is kept on the exception for logging only.
    """

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(
            message="Access denied",
            code="ACCESS_DENIED",
            status_code=status.HTTP_403_FORBIDDEN,
        )


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, resource: str = "Resource"):
        super().__init__(
            message=f"{resource} not found",
            code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
        )


# ---------------------------------------------------------------------------
# Upstream (content store / repository unavailable) - retryable for reads
# ---------------------------------------------------------------------------

class UpstreamFailure(APIError):
    """Base for content store and repository failures."""

    public_message = "Service temporarily unavailable"

    def __init__(
        self,
        detail: str = "",
        code: str = "UPSTREAM_FAILURE",
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE,
    ):
        self.detail = detail
        super().__init__(message=self.public_message, code=code, status_code=status_code)

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}" if self.detail else self.code


class UploadFailure(UpstreamFailure):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="UPLOAD_FAILURE")


class QuotaExceeded(UpstreamFailure):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="QUOTA_EXCEEDED", status_code=status.HTTP_507_INSUFFICIENT_STORAGE)


class ContentUnavailable(UpstreamFailure):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="CONTENT_UNAVAILABLE")


class RepositoryUnavailable(UpstreamFailure):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="REPOSITORY_UNAVAILABLE")


class Timeout(UpstreamFailure):
    def __init__(self, detail: str = "", code: str = "TIMEOUT"):
        super().__init__(detail, code=code, status_code=status.HTTP_504_GATEWAY_TIMEOUT)


class ContentStoreTimeout(Timeout):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="CONTENT_STORE_TIMEOUT")


class RepositoryTimeout(Timeout):
    def __init__(self, detail: str = ""):
        super().__init__(detail, code="REPOSITORY_TIMEOUT")


# ---------------------------------------------------------------------------
# Integrity (programming / environment bugs)
# ---------------------------------------------------------------------------

class IntegrityViolation(APIError):
    def __init__(self, message: str, code: str = "INTEGRITY_VIOLATION", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


class ImmutableFieldViolation(IntegrityViolation):
    def __init__(self, fields):
        fields = sorted(fields)
        super().__init__(
            message=f"Immutable fields cannot be modified: {', '.join(fields)}",
            code="IMMUTABLE_FIELD_VIOLATION",
            details={"fields": fields},
        )


class DuplicateIdentifier(IntegrityViolation):
    def __init__(self, identifier: str):
        super().__init__(
            message="Generated identifier already exists",
            code="DUPLICATE_IDENTIFIER",
            details={"id": identifier},
        )


class ConstraintViolation(APIError):
    """Referential or uniqueness constraint failed in the repository."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            code="CONSTRAINT_VIOLATION",
            status_code=status.HTTP_409_CONFLICT,
            details=details,
        )


def format_error_response(
    request: Request,
    error: Exception,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    code: Optional[str] = None,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    """
    Format error response in standard format.

    Args:
        request: FastAPI request object
        error: Exception that occurred
        status_code: HTTP status code
        code: Error code
        message: Error message
        details: Additional error details

    Returns:
        JSONResponse with formatted error
    """
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    if isinstance(error, APIError):
        error_code = error.code
        error_message = error.message
        error_status = error.status_code
        error_details = error.details
    else:
        error_code = code or "INTERNAL_SERVER_ERROR"
        error_message = message or "An unexpected error occurred"
        error_status = status_code
        error_details = details or {}

    log_extra = {
        "request_id": request_id,
        "error_code": error_code,
        "status_code": error_status,
    }
    if isinstance(error, UpstreamFailure):
        log_extra["upstream_detail"] = error.detail
    if isinstance(error, AccessDenied) and error.reason:
        log_extra["deny_reason"] = error.reason

    if isinstance(error, IntegrityViolation):
        logger.critical(f"Integrity violation: {error_message}", extra=log_extra)
    elif error_status >= 500:
        unexpected = not isinstance(error, (APIError, StarletteHTTPException))
        logger.error(f"Error: {error_message}", exc_info=error if unexpected else None, extra=log_extra)
    else:
        logger.warning(f"Request rejected: {error_message}", extra=log_extra)

    if error_status >= 500 or isinstance(error, IntegrityViolation):
        capture_exception(
            error,
            context={
                "request_id": request_id,
                "error_code": error_code,
                "status_code": error_status,
                "path": str(request.url.path),
                "method": request.method,
            },
        )

    error_response = {
        "error": {
            "code": error_code,
            "message": error_message,
            "request_id": request_id,
            "timestamp": datetime.utcnow().isoformat() + "Z",
        }
    }

    if error_details:
        error_response["error"]["details"] = error_details

    # Recovery hints for common errors
    if isinstance(error, ValidationError) or error_code == "VALIDATION_ERROR":
        error_response["error"]["hint"] = "Check the request format and required fields"
    elif error_code == "AUTHENTICATION_ERROR":
        error_response["error"]["hint"] = "Send a valid Bearer ID token"
    elif isinstance(error, UpstreamFailure):
        error_response["error"]["hint"] = "Retry the request later"

    return JSONResponse(
        status_code=error_status,
        content=error_response,
        headers={"X-Request-ID": request_id},
    )


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions."""
    return format_error_response(request, exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTPException exceptions."""
    return format_error_response(
        request,
        exc,
        status_code=exc.status_code,
        code="HTTP_ERROR",
        message=exc.detail,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return format_error_response(
        request,
        exc,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details={"fields": errors},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions."""
    return format_error_response(
        request,
        exc,
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="INTERNAL_SERVER_ERROR",
        message="An unexpected error occurred",
    )
