"""
Custom Exceptions for ExamScribe AI
===================================

This module defines a hierarchy of custom exceptions that:

1. **Categorize Errors**: Different exception types for different problems
2. **Carry Context**: Include relevant information for debugging
3. **Map to HTTP**: The API error middleware turns each type into a status code

Only failures that must reach the caller live here. Fail-soft stages
(speaker attribution, text normalization, scribe, coder) log and degrade
instead of raising.

Exception Hierarchy:
    ExamScribeError (base)
    ├── AudioError
    │   ├── EmptyAudioError
    │   ├── UnsupportedAudioFormatError
    │   └── AudioTooLargeError
    ├── TranscriptionError
    │   └── TranscriptionFailedError
    ├── GenerationError
    │   ├── OllamaConnectionError
    │   └── AnalysisFailedError
    ├── RetrievalError
    │   └── KnowledgeBaseError
    ├── ValidationError
    │   └── NoteValidationError
    ├── SessionNotFoundError
    └── ConfigurationError
"""

from typing import Optional


class ExamScribeError(Exception):
    """
    Base exception for all ExamScribe errors.

    All custom exceptions inherit from this, allowing code to catch
    all ExamScribe-related errors with a single except clause:

        try:
            await pipeline.arun_clinical_note_pipeline(transcript)
        except ExamScribeError as e:
            logger.error(f"ExamScribe error: {e}")

    Attributes:
        message: Human-readable error description
        details: Additional context (dict for API responses)
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for API responses.

        Returns a structured error that can be easily serialized to JSON.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Audio-Related Errors
# =============================================================================

class AudioError(ExamScribeError):
    """Base class for audio-related errors."""
    pass


class EmptyAudioError(AudioError):
    """Raised when an uploaded audio clip contains no data."""

    def __init__(self, filename: str):
        super().__init__(
            message=f"Audio file is empty: {filename}",
            details={"filename": filename}
        )


class UnsupportedAudioFormatError(AudioError):
    """Raised when the audio file format is not supported."""

    def __init__(self, filename: str, format: str, supported_formats: list[str]):
        super().__init__(
            message=f"Unsupported audio format: {format}. Supported: {', '.join(supported_formats)}",
            details={
                "filename": filename,
                "format": format,
                "supported_formats": supported_formats
            }
        )


class AudioTooLargeError(AudioError):
    """Raised when audio exceeds the upload size accepted by the speech API."""

    def __init__(self, filename: str, size_mb: float, max_size_mb: float):
        super().__init__(
            message=f"Audio too large: {size_mb:.1f}MB (max: {max_size_mb:.1f}MB)",
            details={
                "filename": filename,
                "size_mb": round(size_mb, 2),
                "max_size_mb": max_size_mb
            }
        )


# =============================================================================
# Transcription-Related Errors
# =============================================================================

class TranscriptionError(ExamScribeError):
    """Base class for transcription errors."""
    pass


class TranscriptionFailedError(TranscriptionError):
    """Raised when the speech-to-text service call fails for any reason."""

    def __init__(self, filename: str, reason: str, status_code: Optional[int] = None):
        details = {
            "filename": filename,
            "reason": reason
        }
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(
            message=f"Transcription failed for {filename}: {reason}",
            details=details
        )


# =============================================================================
# Generation-Related Errors
# =============================================================================

class GenerationError(ExamScribeError):
    """Base class for LLM generation errors."""
    pass


class OllamaConnectionError(GenerationError):
    """Raised when we can't connect to Ollama."""

    def __init__(self, url: str, original_error: str):
        super().__init__(
            message=f"Cannot connect to Ollama at {url}: {original_error}",
            details={
                "ollama_url": url,
                "original_error": original_error,
                "hint": "Make sure Ollama is running: 'ollama serve'"
            }
        )


class AnalysisFailedError(GenerationError):
    """
    Raised when the clinical note pipeline cannot produce a result.

    The Advisor agent has no safe degraded output, so its failures end the
    whole invocation. The caller is expected to offer a retry.
    """

    def __init__(self, stage: str, reason: str):
        super().__init__(
            message=f"Analysis failed at {stage}: {reason}",
            details={
                "stage": stage,
                "reason": reason,
                "retryable": True
            }
        )


# =============================================================================
# Retrieval Errors
# =============================================================================

class RetrievalError(ExamScribeError):
    """Base class for knowledge retrieval errors."""
    pass


class KnowledgeBaseError(RetrievalError):
    """Raised when the protocol corpus cannot be read or indexed."""

    def __init__(self, path: str, reason: str):
        super().__init__(
            message=f"Failed to build knowledge base from {path}: {reason}",
            details={
                "path": path,
                "reason": reason
            }
        )


# =============================================================================
# Validation and Persistence Errors
# =============================================================================

class ValidationError(ExamScribeError):
    """Base class for input rejected before any external call."""
    pass


class NoteValidationError(ValidationError):
    """Raised when a clinical note or transcript fails a business rule."""

    def __init__(self, message: str, missing_fields: Optional[list[str]] = None):
        super().__init__(
            message=message,
            details={"missing_fields": missing_fields or []}
        )


class SessionNotFoundError(ExamScribeError):
    """Raised when an examination session id is unknown."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Examination session not found: {session_id}",
            details={"session_id": session_id}
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(ExamScribeError):
    """Raised when there's a configuration problem."""

    def __init__(self, setting_name: str, issue: str):
        super().__init__(
            message=f"Configuration error for '{setting_name}': {issue}",
            details={
                "setting_name": setting_name,
                "issue": issue
            }
        )
