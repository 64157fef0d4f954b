"""Centralized error handling for the API.

This module provides standardized error codes, exception-to-response mapping,
and a global exception handler for FastAPI.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from mediajobs.core.logging import get_request_id
from mediajobs.core.metrics import MetricsCollector, endpoint_label
from mediajobs.services.exceptions import (
    AccessDeniedError,
    ArtifactNotFoundError,
    ExtractionError,
    JobNotFoundError,
    JobStateError,
    PipelineError,
    PostProcessingError,
    ProbeError,
    QueueFullError,
    SubmissionError,
)

logger = structlog.get_logger(__name__)


class ErrorCode:
    """Standardized error codes for API responses."""

    # Client Errors (4xx)
    INVALID_SOURCE = "INVALID_SOURCE"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_METADATA = "INVALID_METADATA"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    ARTIFACT_NOT_FOUND = "ARTIFACT_NOT_FOUND"
    ACCESS_DENIED = "ACCESS_DENIED"
    JOB_ACTIVE = "JOB_ACTIVE"

    # Server Errors (5xx)
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    POST_PROCESSING_FAILED = "POST_PROCESSING_FAILED"
    PROBE_FAILED = "PROBE_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Service Unavailable (503)
    QUEUE_FULL = "QUEUE_FULL"
    COMPONENT_UNAVAILABLE = "COMPONENT_UNAVAILABLE"


ERROR_CODE_TO_STATUS: Dict[str, int] = {
    # 400 Bad Request
    ErrorCode.INVALID_SOURCE: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_FORMAT: HTTP_400_BAD_REQUEST,
    ErrorCode.INVALID_METADATA: HTTP_400_BAD_REQUEST,
    # 403 Forbidden
    ErrorCode.ACCESS_DENIED: HTTP_403_FORBIDDEN,
    # 404 Not Found
    ErrorCode.JOB_NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.ARTIFACT_NOT_FOUND: HTTP_404_NOT_FOUND,
    # 409 Conflict
    ErrorCode.JOB_ACTIVE: HTTP_409_CONFLICT,
    # 422 Unprocessable Entity
    ErrorCode.VALIDATION_ERROR: HTTP_422_UNPROCESSABLE_ENTITY,
    # 500 Internal Server Error
    ErrorCode.EXTRACTION_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.POST_PROCESSING_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.PROBE_FAILED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.INTERNAL_ERROR: HTTP_500_INTERNAL_SERVER_ERROR,
    # 503 Service Unavailable
    ErrorCode.QUEUE_FULL: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.COMPONENT_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
}


ERROR_SUGGESTIONS: Dict[str, str] = {
    ErrorCode.INVALID_SOURCE: (
        "Provide a video id (letters, digits, '-' or '_') or a youtube.com / youtu.be URL"
    ),
    ErrorCode.INVALID_FORMAT: "Only the 'mp3' output format is supported",
    ErrorCode.INVALID_METADATA: "Metadata values must be strings of at most 255 characters",
    ErrorCode.VALIDATION_ERROR: "Check the request body against the API schema",
    ErrorCode.JOB_NOT_FOUND: "The job ID does not exist or has expired",
    ErrorCode.ARTIFACT_NOT_FOUND: (
        "The job has not completed yet, failed, or its file has expired. "
        "Check GET /api/v1/jobs/{job_id}"
    ),
    ErrorCode.ACCESS_DENIED: "Artifact references must name a file inside the output directory",
    ErrorCode.JOB_ACTIVE: "Wait for the job to reach a terminal state before deleting it",
    ErrorCode.EXTRACTION_FAILED: "The media could not be extracted. Check server logs for details",
    ErrorCode.POST_PROCESSING_FAILED: "Metadata tagging failed. The untagged file is still available",
    ErrorCode.PROBE_FAILED: "The artifact could not be inspected. Check that ffprobe is installed",
    ErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Contact administrator if the issue persists",
    ErrorCode.QUEUE_FULL: "Job queue is at capacity. Try again later",
    ErrorCode.COMPONENT_UNAVAILABLE: "A required system component is unavailable. Check /health for status",
}


# Order matters: subclasses must come before their base classes
EXCEPTION_TO_ERROR_CODE: Dict[Type[Exception], str] = {
    ArtifactNotFoundError: ErrorCode.ARTIFACT_NOT_FOUND,
    ExtractionError: ErrorCode.EXTRACTION_FAILED,
    PostProcessingError: ErrorCode.POST_PROCESSING_FAILED,
    ProbeError: ErrorCode.PROBE_FAILED,
    JobNotFoundError: ErrorCode.JOB_NOT_FOUND,
    JobStateError: ErrorCode.JOB_ACTIVE,
    QueueFullError: ErrorCode.QUEUE_FULL,
    AccessDeniedError: ErrorCode.ACCESS_DENIED,
}


class APIError(Exception):
    """Structured API error that can be converted to ErrorDetail response."""

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
            suggestion: Optional suggestion for resolution. If not provided,
                        the default suggestion for the error code is used.
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        self.suggestion = suggestion or ERROR_SUGGESTIONS.get(error_code)
        super().__init__(message)


def map_exception_to_api_error(exc: Exception) -> APIError:
    """Map pipeline exceptions to APIError.

    SubmissionError carries its own code. Everything else is dispatched
    through EXCEPTION_TO_ERROR_CODE, whose order puts subclasses first.
    """
    if isinstance(exc, SubmissionError):
        return APIError(exc.code, str(exc))
    for exc_type, error_code in EXCEPTION_TO_ERROR_CODE.items():
        if isinstance(exc, exc_type):
            details = getattr(exc, "stderr", None) or None
            return APIError(error_code, str(exc), details=details)
    return APIError(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")


def _build_error_response(
    error_code: str,
    message: str,
    details: Optional[str] = None,
    suggestion: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a standardized error response dictionary."""
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

    Converts all exceptions to standardized ErrorDetail responses with
    consistent structure, proper HTTP status codes, and request tracing.

    Args:
        request: The FastAPI request object.
        exc: The exception that was raised.

    Returns:
        JSONResponse with ErrorDetail body and appropriate status code.
    """
    if isinstance(exc, APIError):
        status_code = ERROR_CODE_TO_STATUS.get(exc.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
            suggestion=exc.suggestion,
        )
        logger.warning(
            "api_error",
            error_code=exc.error_code,
            message=exc.message,
            path=request.url.path,
        )

    elif isinstance(exc, HTTPException):
        status_code = exc.status_code

        if isinstance(exc.detail, dict) and "error_code" in exc.detail:
            error_code = exc.detail["error_code"]
            message = exc.detail.get("message", str(exc.detail))
            details = exc.detail.get("details")
        else:
            error_code = _status_to_error_code(status_code)
            message = str(exc.detail) if exc.detail else "An error occurred"
            details = None

        suggestion = ERROR_SUGGESTIONS.get(error_code)
        response = _build_error_response(
            error_code=error_code,
            message=message,
            details=details,
            suggestion=suggestion,
        )
        logger.warning(
            "http_exception",
            status_code=status_code,
            error_code=error_code,
            path=request.url.path,
        )

    elif isinstance(exc, PipelineError):
        api_error = map_exception_to_api_error(exc)
        status_code = ERROR_CODE_TO_STATUS.get(api_error.error_code, HTTP_500_INTERNAL_SERVER_ERROR)
        response = _build_error_response(
            error_code=api_error.error_code,
            message=api_error.message,
            details=api_error.details,
            suggestion=api_error.suggestion,
        )
        logger.warning(
            "pipeline_error",
            error_code=api_error.error_code,
            error_type=type(exc).__name__,
            message=str(exc),
            path=request.url.path,
        )

    else:
        status_code = HTTP_500_INTERNAL_SERVER_ERROR
        response = _build_error_response(
            error_code=ErrorCode.INTERNAL_ERROR,
            message="An unexpected error occurred",
            suggestion=ERROR_SUGGESTIONS.get(ErrorCode.INTERNAL_ERROR),
        )
        logger.error(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error=str(exc),
            path=request.url.path,
            exc_info=True,
        )

    MetricsCollector.record_error(response["error_code"], endpoint_label(request))

    return JSONResponse(status_code=status_code, content=response)


def _status_to_error_code(status_code: int) -> str:
    """Infer error code from HTTP status code."""
    if status_code == HTTP_400_BAD_REQUEST:
        return ErrorCode.INVALID_SOURCE
    elif status_code == HTTP_403_FORBIDDEN:
        return ErrorCode.ACCESS_DENIED
    elif status_code == HTTP_404_NOT_FOUND:
        return ErrorCode.JOB_NOT_FOUND
    elif status_code == HTTP_409_CONFLICT:
        return ErrorCode.JOB_ACTIVE
    elif status_code == HTTP_422_UNPROCESSABLE_ENTITY:
        return ErrorCode.VALIDATION_ERROR
    elif status_code == HTTP_503_SERVICE_UNAVAILABLE:
        return ErrorCode.COMPONENT_UNAVAILABLE
    else:
        return ErrorCode.INTERNAL_ERROR
