"""Centralized error handling for the HTTP surface.

Standardized error codes, pipeline-exception-to-response mapping and a global
exception handler for FastAPI.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_410_GONE,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from clipvault.core.exceptions import (
    ArchiveFailure,
    DeliveryFailure,
    FetchFailure,
    FormatNotOffered,
    NoUsableFormat,
    PipelineError,
    QueueCapacityExceeded,
    ResolutionError,
    SessionExpired,
)
from clipvault.core.logging import get_request_id
from clipvault.core.metrics import MetricsCollector
from clipvault.services.flows import FlowNotFoundError

logger = structlog.get_logger(__name__)


class ErrorCode:
    """Machine-readable identifiers for error conditions."""

    # Client Errors (4xx)
    INVALID_REQUEST = "INVALID_REQUEST"
    FLOW_NOT_FOUND = "FLOW_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    NO_USABLE_FORMAT = "NO_USABLE_FORMAT"
    FORMAT_NOT_OFFERED = "FORMAT_NOT_OFFERED"

    # Server Errors (5xx)
    FETCH_FAILED = "FETCH_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Service Unavailable (503)
    QUEUE_FULL = "QUEUE_FULL"
    COMPONENT_UNAVAILABLE = "COMPONENT_UNAVAILABLE"


ERROR_CODE_TO_STATUS: Dict[str, int] = {
    ErrorCode.INVALID_REQUEST: HTTP_400_BAD_REQUEST,
    ErrorCode.FLOW_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.SESSION_EXPIRED: HTTP_410_GONE,
    ErrorCode.RESOLUTION_FAILED: HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.NO_USABLE_FORMAT: HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.FORMAT_NOT_OFFERED: HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.FETCH_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.UPLOAD_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.INTERNAL_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.QUEUE_FULL: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.COMPONENT_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
}


ERROR_SUGGESTIONS: Dict[str, str] = {
    ErrorCode.INVALID_REQUEST: "Check the request body against the API schema",
    ErrorCode.FLOW_NOT_FOUND: "The flow ID does not exist or has expired",
    ErrorCode.SESSION_EXPIRED: "Resolve the URL again to start a new session",
    ErrorCode.RESOLUTION_FAILED: "The video may be private, deleted, geo-blocked or the link is invalid",
    ErrorCode.NO_USABLE_FORMAT: "The video has no rendition within the offered quality range",
    ErrorCode.FORMAT_NOT_OFFERED: "Pick one of the choices returned by POST /api/v1/resolve",
    ErrorCode.FETCH_FAILED: "The download failed. Try again later",
    ErrorCode.UPLOAD_FAILED: "Delivering the file failed. Try again later",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Contact administrator if the issue persists",
    ErrorCode.QUEUE_FULL: "Download queue is at capacity. Try again later",
    ErrorCode.COMPONENT_UNAVAILABLE: "A required system component is unavailable. Check /health for status",
}


# Order matters: subclasses must come before their base classes
EXCEPTION_TO_ERROR_CODE: Dict[Type[Exception], str] = {
    SessionExpired: ErrorCode.SESSION_EXPIRED,
    ResolutionError: ErrorCode.RESOLUTION_FAILED,
    FormatNotOffered: ErrorCode.FORMAT_NOT_OFFERED,
    NoUsableFormat: ErrorCode.NO_USABLE_FORMAT,
    QueueCapacityExceeded: ErrorCode.QUEUE_FULL,
    FetchFailure: ErrorCode.FETCH_FAILED,
    ArchiveFailure: ErrorCode.UPLOAD_FAILED,
    DeliveryFailure: ErrorCode.UPLOAD_FAILED,
    FlowNotFoundError: ErrorCode.FLOW_NOT_FOUND,
    # PipelineError must be last (after its subclasses)
    PipelineError: ErrorCode.INTERNAL_ERROR,
}


class APIError(Exception):
    """Structured API error converted to an ErrorDetail response by the global handler."""

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        """Initialize an API error.

        Args:
            error_code: Machine-readable error code from ErrorCode class.
            message: Human-readable error message.
            details: Optional additional details about the error.
            suggestion: Optional suggestion for resolution. Defaults to the
                        suggestion registered for the error code.
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.suggestion = suggestion or ERROR_SUGGESTIONS.get(error_code)
        super().__init__(message)


def map_exception_to_api_error(exc: Exception) -> APIError:
    """Map pipeline exceptions to APIError.

    Pipeline errors expose their ``user_message``; the internal message goes to
    ``details``.

    Args:
        exc: The exception to map.

    Returns:
        An APIError with the appropriate error code and message.
    """
    for exc_type, error_code in EXCEPTION_TO_ERROR_CODE.items():
        if isinstance(exc, exc_type):
            if isinstance(exc, PipelineError):
                return APIError(error_code, exc.user_message, details=str(exc))
            return APIError(error_code, str(exc))
    return APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def _build_error_response(
    error_code: str,
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a standardized error response dictionary matching ErrorDetail."""
    request_id = get_request_id()
    timestamp = datetime.now(timezone.utc).isoformat()

    response: Dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "timestamp": timestamp,
    }

    if details:
        response["details"] = details
    if request_id:
        response["request_id"] = request_id
    if suggestion:
        response["suggestion"] = suggestion

    return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for FastAPI.

    Converts all exceptions to ErrorDetail responses with consistent
    structure, HTTP status codes and request tracing.

    Args:
        request: The FastAPI request object.
        exc: The exception that was raised.

    Returns:
        JSONResponse with ErrorDetail body and appropriate status code.
    """
    if isinstance(exc, APIError):
        api_error = exc
        logger.warning(
            "api_error",
            error_code=exc.error_code,
            message=exc.message,
            path=request.url.path,
        )

    elif isinstance(exc, HTTPException):
        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            error_code = exc.detail["error_code"]
            message = exc.detail.get("message", str(exc.detail))
        else:
            error_code = _status_to_error_code(exc.status_code)
            message = str(exc.detail) if exc.detail else "An error occurred"

        response = _build_error_response(
            error_code=error_code,
            message=message,
            suggestion=ERROR_SUGGESTIONS.get(error_code),
        )
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            error_code=error_code,
            path=request.url.path,
        )
        MetricsCollector.record_error(error_code, request.url.path)
        return JSONResponse(status_code=exc.status_code, content=response)

    elif isinstance(exc, (PipelineError, FlowNotFoundError)):
        api_error = map_exception_to_api_error(exc)
        logger.warning(
            "pipeline_error",
            error_code=api_error.error_code,
            error_type=type(exc).__name__,
            message=str(exc),
            path=request.url.path,
        )

    else:
        api_error = APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

    status_code = ERROR_CODE_TO_STATUS.get(api_error.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
    response = _build_error_response(
        error_code=api_error.error_code,
        message=api_error.message,
        details=api_error.details,
        suggestion=api_error.suggestion,
    )
    MetricsCollector.record_error(api_error.error_code, request.url.path)
    return JSONResponse(status_code=status_code, content=response)


def _status_to_error_code(status_code: int) -> str:
    """Infer error code from HTTP status code."""
    if status_code in (HTTP_400_BAD_REQUEST, HTTP_422_UNPROCESSABLE_ENTITY):
        return ErrorCode.INVALID_REQUEST
    elif status_code == HTTP_404_NOT_FOUND:
        return ErrorCode.FLOW_NOT_FOUND
    elif status_code == HTTP_503_SERVICE_UNAVAILABLE:
        return ErrorCode.COMPONENT_UNAVAILABLE
    else:
        return ErrorCode.INTERNAL_ERROR
