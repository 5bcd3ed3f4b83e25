"""
RFC 7807 Problem Details exception handling.

Every failure the booking core surfaces to a caller is one of the classes
below. Each carries a machine-readable ``reason`` so the UI can tell apart,
for example, a reschedule blocked by the original start time from one
blocked by the proposed new start time.

See: https://datatracker.ietf.org/doc/html/rfc7807
"""

from typing import Optional, Dict, Any, List
from enum import Enum
from pydantic import BaseModel, Field
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import uuid
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://agenda.example.com/problems"


def _new_trace_id() -> str:
    return str(uuid.uuid4())[:12]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class ErrorCode(str, Enum):
    """Standardized error codes for the booking API."""

    # Authentication
    UNAUTHORIZED = "AUTH_001"
    FORBIDDEN = "AUTH_002"

    # Validation
    VALIDATION_ERROR = "VAL_001"
    INVALID_FORMAT = "VAL_002"

    # Resource
    NOT_FOUND = "RES_001"
    CONFLICT = "RES_003"

    # Business Logic
    BUSINESS_RULE_VIOLATION = "BIZ_001"
    INVALID_STATE_TRANSITION = "BIZ_004"

    # External Services
    EXTERNAL_SERVICE_ERROR = "EXT_001"
    PAYMENT_PROVIDER_ERROR = "EXT_006"

    # Server
    INTERNAL_ERROR = "SRV_001"
    SERVICE_UNAVAILABLE = "SRV_002"


class ProblemDetail(BaseModel):
    """
    RFC 7807 Problem Details response schema.

    Attributes:
        type: URI reference identifying the problem type
        title: Short, human-readable summary
        status: HTTP status code
        detail: Human-readable explanation specific to this occurrence
        instance: URI reference identifying this specific occurrence
        code: Machine-readable error code for client handling
        reason: Finer-grained reason within the code (e.g. too_close_new)
        timestamp: ISO 8601 timestamp of when the error occurred
        trace_id: Unique identifier for tracing in logs
        errors: List of field-level validation errors (for 422)
    """

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str
    instance: Optional[str] = None
    code: str
    reason: Optional[str] = None
    timestamp: str
    trace_id: str
    errors: Optional[List[Dict[str, Any]]] = None

    model_config = {
        "json_schema_extra": {
            "example": {
                "type": f"{PROBLEM_TYPE_BASE}/biz-004",
                "title": "Conflict",
                "status": 409,
                "detail": "Only pending appointments can be rescheduled",
                "instance": "/api/v2/appointments/123/reschedule",
                "code": "BIZ_004",
                "reason": "not_pending",
                "timestamp": "2026-01-29T10:30:00Z",
                "trace_id": "abc123def456",
            }
        }
    }


class AgendaException(HTTPException):
    """
    Base exception for the booking API with RFC 7807 support.

    Usage:
        raise AgendaException(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail="Appointment not found",
            reason="appointment_not_found",
        )
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        detail: str,
        reason: Optional[str] = None,
        title: Optional[str] = None,
        instance: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.reason = reason
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.errors = errors
        self.trace_id = _new_trace_id()
        self.timestamp = _utc_timestamp()

        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title based on status code."""
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            403: "Forbidden",
            404: "Not Found",
            409: "Conflict",
            422: "Validation Error",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem_detail(self) -> ProblemDetail:
        """Convert to RFC 7807 ProblemDetail."""
        return ProblemDetail(
            type=f"{PROBLEM_TYPE_BASE}/{self.code.value.lower().replace('_', '-')}",
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=self.instance,
            code=self.code.value,
            reason=self.reason,
            timestamp=self.timestamp,
            trace_id=self.trace_id,
            errors=self.errors,
        )


# Convenience exception classes

class NotFoundError(AgendaException):
    """Resource missing or not owned by the caller (404)."""

    def __init__(self, resource: str, resource_id: str, reason: Optional[str] = None):
        super().__init__(
            status_code=404,
            code=ErrorCode.NOT_FOUND,
            detail=f"{resource} with ID {resource_id} was not found",
            reason=reason or f"{resource.lower()}_not_found",
        )


class ValidationError(AgendaException):
    """Malformed input such as a bad date, time or money amount (422)."""

    def __init__(
        self,
        detail: str,
        reason: Optional[str] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(
            status_code=422,
            code=ErrorCode.VALIDATION_ERROR,
            detail=detail,
            reason=reason,
            errors=errors,
        )


class UnauthorizedError(AgendaException):
    """Authentication required (401)."""

    def __init__(self, detail: str = "Authentication required"):
        super().__init__(
            status_code=401,
            code=ErrorCode.UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ConflictError(AgendaException):
    """Operation not valid for the current state (409)."""

    def __init__(self, detail: str, reason: str):
        super().__init__(
            status_code=409,
            code=ErrorCode.INVALID_STATE_TRANSITION,
            detail=detail,
            reason=reason,
        )


class ExternalServiceError(AgendaException):
    """Payment provider or other upstream failure (502)."""

    def __init__(self, service: str, detail: str):
        super().__init__(
            status_code=502,
            code=ErrorCode.PAYMENT_PROVIDER_ERROR,
            detail=f"{service} service error: {detail}",
            reason=service,
        )


class BusinessRuleError(AgendaException):
    """Business rule violation (400)."""

    def __init__(self, detail: str, reason: Optional[str] = None):
        super().__init__(
            status_code=400,
            code=ErrorCode.BUSINESS_RULE_VIOLATION,
            detail=detail,
            reason=reason,
        )


# Exception handlers for FastAPI

def create_problem_response(
    status_code: int,
    code: ErrorCode,
    detail: str,
    request: Request,
    errors: Optional[List[Dict[str, Any]]] = None,
    trace_id: Optional[str] = None,
) -> JSONResponse:
    """Create a RFC 7807 compliant JSON response."""
    problem = ProblemDetail(
        type=f"{PROBLEM_TYPE_BASE}/{code.value.lower().replace('_', '-')}",
        title=AgendaException._default_title(status_code),
        status=status_code,
        detail=detail,
        instance=str(request.url.path),
        code=code.value,
        timestamp=_utc_timestamp(),
        trace_id=trace_id or _new_trace_id(),
        errors=errors,
    )

    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


async def agenda_exception_handler(request: Request, exc: AgendaException) -> JSONResponse:
    """Handle AgendaException with RFC 7807 response."""
    logger.warning(
        f"AgendaException: {exc.code.value} ({exc.reason}) - {exc.detail}",
        extra={
            "trace_id": exc.trace_id,
            "status_code": exc.status_code,
            "path": request.url.path,
        }
    )

    problem = exc.to_problem_detail()
    if problem.instance is None:
        problem.instance = str(request.url.path)

    return JSONResponse(
        status_code=exc.status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle standard HTTPException with RFC 7807 response."""
    code_map = {
        400: ErrorCode.VALIDATION_ERROR,
        401: ErrorCode.UNAUTHORIZED,
        403: ErrorCode.FORBIDDEN,
        404: ErrorCode.NOT_FOUND,
        409: ErrorCode.CONFLICT,
        422: ErrorCode.VALIDATION_ERROR,
        500: ErrorCode.INTERNAL_ERROR,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.SERVICE_UNAVAILABLE,
    }

    return create_problem_response(
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, ErrorCode.INTERNAL_ERROR),
        detail=str(exc.detail),
        request=request,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle Pydantic validation errors with field-level details."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return create_problem_response(
        status_code=422,
        code=ErrorCode.VALIDATION_ERROR,
        detail="Request validation failed",
        request=request,
        errors=errors,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with RFC 7807 response."""
    from agenda.config import settings

    trace_id = _new_trace_id()
    logger.error(
        f"Unhandled exception: {exc}",
        extra={"trace_id": trace_id, "path": request.url.path},
        exc_info=True,
    )

    # Don't expose internal details in production
    detail = str(exc) if settings.DEBUG else "An unexpected error occurred"

    return create_problem_response(
        status_code=500,
        code=ErrorCode.INTERNAL_ERROR,
        detail=detail,
        request=request,
        trace_id=trace_id,
    )


def register_exception_handlers(app) -> None:
    """Attach the RFC 7807 handlers to a FastAPI app."""
    app.add_exception_handler(AgendaException, agenda_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
