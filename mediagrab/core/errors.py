"""Centralized error handling for the API.

This module maps the resolver and download failure taxonomies to machine
error codes and HTTP statuses, and provides the global exception handler
installed on the FastAPI app.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import structlog
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_404_NOT_FOUND,
    HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_504_GATEWAY_TIMEOUT,
)

from mediagrab.core.logging import get_request_id
from mediagrab.core.metrics import MetricsCollector
from mediagrab.resolvers.exceptions import InvalidURLError, ResolverError
from mediagrab.services.exceptions import (
    DownloadCancelled,
    DownloadFailure,
    InvalidInputError,
    PayloadTooLargeError,
    RemoteJobError,
    RemoteJobTimeout,
    UpstreamFailureError,
)

logger = structlog.get_logger(__name__)

# nginx convention for "client closed request"
HTTP_499_CLIENT_CLOSED_REQUEST = 499


class ErrorCode:
    """Machine-readable error codes returned in ErrorDetail responses."""

    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    PAYLOAD_TOO_LARGE = "PAYLOAD_TOO_LARGE"
    CANCELLED = "CANCELLED"

    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    REMOTE_JOB_ERROR = "REMOTE_JOB_ERROR"
    REMOTE_JOB_TIMEOUT = "REMOTE_JOB_TIMEOUT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_CODE_TO_STATUS: Dict[str, int] = {
    ErrorCode.INVALID_INPUT: HTTP_400_BAD_REQUEST,
    ErrorCode.UNSUPPORTED_PLATFORM: HTTP_400_BAD_REQUEST,
    ErrorCode.PAYLOAD_TOO_LARGE: HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ErrorCode.CANCELLED: HTTP_499_CLIENT_CLOSED_REQUEST,
    ErrorCode.UPSTREAM_FAILURE: HTTP_502_BAD_GATEWAY,
    ErrorCode.REMOTE_JOB_ERROR: HTTP_502_BAD_GATEWAY,
    ErrorCode.REMOTE_JOB_TIMEOUT: HTTP_504_GATEWAY_TIMEOUT,
    ErrorCode.INTERNAL_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
}


ERROR_SUGGESTIONS: Dict[str, str] = {
    ErrorCode.INVALID_INPUT: "Provide a complete video page URL or a direct media URL",
    ErrorCode.UNSUPPORTED_PLATFORM: (
        "No resolver could extract media from this URL. Check that the page is public "
        "and contains a video"
    ),
    ErrorCode.PAYLOAD_TOO_LARGE: "The file exceeds the 2 GB direct download limit. Try a lower quality",
    ErrorCode.UPSTREAM_FAILURE: "The media source did not respond correctly. The link may have expired",
    ErrorCode.REMOTE_JOB_ERROR: "The transcoding service could not process this file",
    ErrorCode.REMOTE_JOB_TIMEOUT: "Processing took too long. Try a shorter clip or a lower quality",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Contact administrator if the issue persists",
}


# Order matters: subclasses must come before their base classes
EXCEPTION_TO_ERROR_CODE: Dict[Type[Exception], str] = {
    DownloadCancelled: ErrorCode.CANCELLED,
    InvalidInputError: ErrorCode.INVALID_INPUT,
    PayloadTooLargeError: ErrorCode.PAYLOAD_TOO_LARGE,
    RemoteJobTimeout: ErrorCode.REMOTE_JOB_TIMEOUT,
    RemoteJobError: ErrorCode.REMOTE_JOB_ERROR,
    UpstreamFailureError: ErrorCode.UPSTREAM_FAILURE,
    InvalidURLError: ErrorCode.INVALID_INPUT,
    # Base classes last
    DownloadFailure: ErrorCode.UPSTREAM_FAILURE,
    ResolverError: ErrorCode.UNSUPPORTED_PLATFORM,
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

    @property
    def status_code(self) -> int:
        return ERROR_CODE_TO_STATUS.get(self.error_code, HTTP_500_INTERNAL_SERVER_ERROR)


def map_exception_to_api_error(exc: Exception) -> APIError:
    """Map resolver and download exceptions to APIError.

    Args:
        exc: The exception to map.

    Returns:
        An APIError with the appropriate error code and message.
    """
    for exc_type, error_code in EXCEPTION_TO_ERROR_CODE.items():
        if isinstance(exc, exc_type):
            return APIError(error_code, str(exc) or "Download cancelled")
    return APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def build_error_response(
    error_code: str,
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a standardized ErrorDetail dictionary.

    Args:
        error_code: Machine-readable error code.
        message: Human-readable error message.
        details: Optional additional details.
        suggestion: Optional suggestion for resolution.

    Returns:
        Dictionary matching the ErrorDetail schema.
    """
    response: Dict[str, Any] = {
        "error_code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    request_id = get_request_id()
    if details:
        response["details"] = details
    if request_id:
        response["request_id"] = request_id
    if suggestion:
        response["suggestion"] = suggestion

    return response


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Convert any exception into an ErrorDetail JSON response.

    Args:
        request: The FastAPI request object.
        exc: The exception that was raised.

    Returns:
        JSONResponse with ErrorDetail body and appropriate status code.
    """
    if isinstance(exc, HTTPException):
        status_code = exc.status_code
        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            api_error = APIError(
                exc.detail["error_code"],
                exc.detail.get("message", str(exc.detail)),
                details=exc.detail.get("details"),
            )
        else:
            api_error = APIError(
                _status_to_error_code(status_code),
                str(exc.detail) if exc.detail else "An error occurred",
            )
    elif isinstance(exc, (DownloadFailure, ResolverError)):
        api_error = map_exception_to_api_error(exc)
        status_code = api_error.status_code
        upstream_status = getattr(exc, "status_code", None)
        if isinstance(exc, UpstreamFailureError) and upstream_status and 400 <= upstream_status < 600:
            # Relay the media host's own status
            status_code = upstream_status
    elif isinstance(exc, APIError):
        api_error = exc
        status_code = exc.status_code
    else:
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )
        api_error = APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")
        status_code = HTTP_500_INTERNAL_SERVER_ERROR

    route = request.scope.get("route")
    MetricsCollector.record_error(api_error.error_code, route.path if route else "/unmatched")

    if api_error.error_code == ErrorCode.CANCELLED:
        # A user abort is a terminal state, not a failure.
        logger.info("request_cancelled", path=request.url.path)
        return JSONResponse(
            status_code=status_code,
            content=build_error_response(ErrorCode.CANCELLED, api_error.message),
        )

    if status_code < HTTP_500_INTERNAL_SERVER_ERROR or api_error.error_code != ErrorCode.INTERNAL_ERROR:
        logger.warning(
            "api_error",
            error_code=api_error.error_code,
            error_type=type(exc).__name__,
            message=api_error.message,
            path=request.url.path,
        )

    return JSONResponse(
        status_code=status_code,
        content=build_error_response(
            error_code=api_error.error_code,
            message=api_error.message,
            details=api_error.details,
            suggestion=api_error.suggestion,
        ),
    )


def _status_to_error_code(status_code: int) -> str:
    """Infer error code from HTTP status code."""
    if status_code in (HTTP_400_BAD_REQUEST, HTTP_404_NOT_FOUND, HTTP_422_UNPROCESSABLE_ENTITY):
        return ErrorCode.INVALID_INPUT
    elif status_code == HTTP_413_REQUEST_ENTITY_TOO_LARGE:
        return ErrorCode.PAYLOAD_TOO_LARGE
    elif status_code == HTTP_504_GATEWAY_TIMEOUT:
        return ErrorCode.REMOTE_JOB_TIMEOUT
    elif status_code == HTTP_502_BAD_GATEWAY:
        return ErrorCode.UPSTREAM_FAILURE
    else:
        return ErrorCode.INTERNAL_ERROR
