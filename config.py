"""
Configuration Management for ExamScribe AI
==========================================

This module handles all application configuration using the Settings pattern
with Pydantic. This approach provides:

1. **Environment Variable Support**: Easy deployment configuration
2. **Validation**: Catches configuration errors at startup
3. **Type Safety**: IDE support and runtime validation
4. **Defaults**: Sensible defaults for development

Design Pattern: Singleton-like Settings
We use a cached function to ensure we only load settings once,
but still allow for easy testing with different configurations.
"""

import logging
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables are prefixed with EXAMSCRIBE_ to avoid conflicts.
    Example: EXAMSCRIBE_OLLAMA_MODEL=qwen2.5:7b

    Priority order (highest to lowest):
    1. Environment variables
    2. .env file
    3. Default values defined here
    """

    # =================================================================
    # Ollama Configuration
    # =================================================================
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server URL. Default is local installation."
    )

    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="""
        Ollama model used by the Scribe, Coder, Speaker Attributor and
        Text Normalizer agents.

        Vietnamese consultations need a multilingual model; qwen2.5 and
        llama3.1 both handle Vietnamese clinical vocabulary reasonably.
        """
    )

    ollama_expert_model: str = Field(
        default="qwen2.5:14b",
        description="""
        Ollama model used by the Advisor agent.

        The Advisor writes free-form clinical advice grounded on retrieved
        protocols, so a larger model pays off here.
        """
    )

    scribe_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Temperature for SOAP note extraction (strict JSON output)"
    )

    coder_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Temperature for ICD-10 code extraction"
    )

    attributor_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Temperature for doctor/patient role attribution"
    )

    normalizer_temperature: float = Field(
        default=0.05,
        ge=0.0,
        le=2.0,
        description="""
        Temperature for medical text correction.

        Kept close to zero: the normalizer must only fix known
        mis-transcriptions, never rephrase.
        """
    )

    advisor_temperature: float = Field(
        default=0.2,
        ge=0.0,
        le=2.0,
        description="Temperature for retrieval-augmented clinical advice"
    )

    ollama_timeout: int = Field(
        default=120,
        description="Timeout in seconds for Ollama requests"
    )

    ollama_context_window: int = Field(
        default=8192,
        description="Context window size for Ollama model (tokens)"
    )

    embedding_model: str = Field(
        default="nomic-embed-text",
        description="Ollama embedding model for retrieval and note comparison"
    )

    # =================================================================
    # Speech-to-Text Configuration
    # =================================================================
    transcription_api_url: str = Field(
        default="https://api.groq.com/openai/v1/audio/transcriptions",
        description="OpenAI-compatible /audio/transcriptions endpoint"
    )

    transcription_api_key: Optional[str] = Field(
        default=None,
        description="Bearer token for the speech-to-text endpoint"
    )

    transcription_model: str = Field(
        default="whisper-large-v3",
        description="Remote Whisper model name"
    )

    transcription_language: str = Field(
        default="vi",
        description="Language hint sent with every transcription request"
    )

    transcription_timeout: float = Field(
        default=120.0,
        description="Timeout in seconds for transcription requests"
    )

    supported_audio_formats: list[str] = Field(
        default=["mp3", "wav", "m4a", "ogg", "flac", "webm"],
        description="List of supported audio file extensions"
    )

    max_audio_size_mb: int = Field(
        default=25,
        description="Maximum upload size accepted by the speech-to-text API"
    )

    # =================================================================
    # Clinical Documentation
    # =================================================================
    note_language: str = Field(
        default="vi",
        description="""
        ISO 639-1 code of the clinical note language.

        Every agent output (SOAP fields, advice) is written in this
        language regardless of the prompt or retrieved context language.
        """
    )

    # =================================================================
    # Knowledge Retrieval (RAG)
    # =================================================================
    knowledge_base_dir: str = Field(
        default="data/knowledge_base/protocols",
        description="Directory of Markdown protocol documents to index"
    )

    chunk_size: int = Field(
        default=1000,
        description="Characters per indexed chunk"
    )

    chunk_overlap: int = Field(
        default=200,
        description="Character overlap between neighbouring chunks"
    )

    retrieval_top_k: int = Field(
        default=3,
        ge=1,
        description="Number of protocol chunks handed to the Advisor"
    )

    # =================================================================
    # Speech Post-Processing
    # =================================================================
    enable_role_refinement: bool = Field(
        default=True,
        description="""
        Run the LLM pass of the Speaker Attributor.

        When disabled only the rule-based cue phrases assign roles, which
        keeps the pipeline usable without a live model.
        """
    )

    enable_text_normalization: bool = Field(
        default=True,
        description="Run the per-segment medical text correction pass"
    )

    normalizer_delay_seconds: float = Field(
        default=0.2,
        ge=0.0,
        description="Pause after each normalizer call (external rate limits)"
    )

    # =================================================================
    # Persistence
    # =================================================================
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for session storage. None = in-memory store"
    )

    session_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        description="Time-to-live for stored sessions, notes and comparisons"
    )

    # =================================================================
    # API Configuration
    # =================================================================
    api_host: str = Field(default="0.0.0.0", description="API bind host")

    api_port: int = Field(default=8000, description="API bind port")

    api_debug: bool = Field(
        default=False,
        description="Expose unexpected error details in API responses"
    )

    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Origins allowed to call the API"
    )

    cors_allow_credentials: bool = Field(default=True)

    analysis_rate_limit: str = Field(
        default="10/minute",
        description="slowapi limit string applied to LLM-backed endpoints"
    )

    # =================================================================
    # Logging Configuration
    # =================================================================
    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Python logging format string"
    )

    class Config:
        """Pydantic configuration for Settings."""
        env_prefix = "EXAMSCRIBE_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached singleton).

    For testing, you can clear the cache:
        get_settings.cache_clear()

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a Settings instance with custom values for testing.

    Example:
        settings = get_settings_for_testing(
            enable_role_refinement=False,
            normalizer_delay_seconds=0,
        )

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: New Settings instance with overrides applied
    """
    return Settings(**overrides)


def setup_logging(settings: Optional[Settings] = None, level: Optional[int] = None) -> None:
    """
    Configure the root logger from settings.

    Args:
        settings: Settings providing `log_level` and `log_format`
        level: Explicit level that overrides `log_level` (CLI flags)
    """
    if settings is None:
        settings = get_settings()
    if level is None:
        level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=settings.log_format, force=True)

    # Keep HTTP client chatter out of pipeline logs
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
