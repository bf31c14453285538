"""
Global Error Handler Middleware
================================

Maps custom exceptions to HTTP status codes and formats error responses.
"""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from exceptions import (
    ExamScribeError,
    AnalysisFailedError,
    AudioTooLargeError,
    ConfigurationError,
    EmptyAudioError,
    GenerationError,
    KnowledgeBaseError,
    NoteValidationError,
    OllamaConnectionError,
    SessionNotFoundError,
    TranscriptionError,
    UnsupportedAudioFormatError,
)
from config import get_settings

logger = logging.getLogger(__name__)


# Map exceptions to HTTP status codes (most specific class wins)
EXCEPTION_STATUS_MAP = {
    EmptyAudioError: status.HTTP_400_BAD_REQUEST,
    UnsupportedAudioFormatError: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    AudioTooLargeError: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    NoteValidationError: status.HTTP_400_BAD_REQUEST,
    SessionNotFoundError: status.HTTP_404_NOT_FOUND,
    TranscriptionError: status.HTTP_502_BAD_GATEWAY,
    AnalysisFailedError: status.HTTP_503_SERVICE_UNAVAILABLE,
    OllamaConnectionError: status.HTTP_503_SERVICE_UNAVAILABLE,
    KnowledgeBaseError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    GenerationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: ExamScribeError) -> int:
    """Resolve the status code for an error, walking up its class hierarchy."""
    for cls in type(error).__mro__:
        if cls in EXCEPTION_STATUS_MAP:
            return EXCEPTION_STATUS_MAP[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def error_handler_middleware(request: Request, call_next):
    """
    Global error handling middleware.

    Catches ExamScribe exceptions and converts them to appropriate
    HTTP responses with structured error bodies. Analysis failures carry
    a Retry-After header.

    Args:
        request: The incoming request
        call_next: The next middleware/route handler

    Returns:
        Response or JSONResponse with error details
    """
    try:
        response = await call_next(request)
        return response
    except ExamScribeError as e:
        status_code = status_for(e)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {e.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {e.message}")

        headers = {"Retry-After": "5"} if isinstance(e, AnalysisFailedError) else None
        return JSONResponse(
            status_code=status_code,
            content=e.to_dict(),
            headers=headers
        )
    except Exception as e:
        logger.exception(f"Unexpected error on {request.method} {request.url.path}")
        settings = get_settings()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error_type": "InternalServerError",
                "message": "An unexpected error occurred",
                "details": {"error": str(e)} if settings.api_debug else {}
            }
        )
