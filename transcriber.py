"""
Transcription Service for ExamScribe AI
=======================================

This module turns an uploaded audio clip into timestamped transcript
segments through a remote Whisper endpoint (any OpenAI-compatible
`/audio/transcriptions` API, Groq by default).

Architecture Pattern: Protocol-based Service
--------------------------------------------
We use Python's Protocol to define what a Transcriber should do. This allows:
1. Easy swapping of implementations (remote API vs mock)
2. Simple mocking for tests
3. Clear contracts for service behavior

Failures are never softened here: a failed speech call leaves nothing to
process, so it surfaces as TranscriptionFailedError.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import httpx

from config import Settings, get_settings
from models import SpeakerRole, TranscriptionResult, TranscriptSegment
from exceptions import (
    AudioTooLargeError,
    ConfigurationError,
    EmptyAudioError,
    TranscriptionFailedError,
    UnsupportedAudioFormatError,
)


# Set up module logger
logger = logging.getLogger(__name__)


class TranscriberProtocol(Protocol):
    """
    Protocol defining the interface for transcription services.

    Any class with an `atranscribe` method matching this signature
    can be used as a transcriber.
    """

    async def atranscribe(self, audio_bytes: bytes, filename: str) -> TranscriptionResult:
        """
        Transcribe an audio clip.

        Args:
            audio_bytes: Raw audio file content
            filename: Original file name (used for format detection)

        Returns:
            TranscriptionResult with ordered, unlabeled segments
        """
        ...


def segments_from_response(data: dict) -> list[TranscriptSegment]:
    """
    Build transcript segments from a verbose_json transcription payload.

    Every segment starts UNLABELED. When the service returns text without
    segments the whole text becomes one segment at 0-0s; empty text yields
    no segments at all.
    """
    text = (data.get("text") or "").strip()
    if not text:
        return []

    segments = []
    for item in data.get("segments") or []:
        segments.append(TranscriptSegment(
            start=float(item.get("start", 0.0)),
            end=float(item.get("end", 0.0)),
            role=SpeakerRole.UNLABELED,
            raw_text=(item.get("text") or "").strip(),
        ))

    if not segments:
        segments.append(TranscriptSegment(start=0.0, end=0.0, raw_text=text))
    return segments


class RemoteWhisperTranscriber:
    """
    Whisper transcription over HTTP.

    Sends the clip as multipart form data with the configured model and
    language, asking for `verbose_json` so segment timings come back.

    Usage:
        transcriber = RemoteWhisperTranscriber(settings)
        result = await transcriber.atranscribe(audio_bytes, "visit.wav")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            settings: Application settings
            transport: Optional httpx transport (tests pass httpx.MockTransport)

        Raises:
            ConfigurationError: If no transcription endpoint is configured
        """
        self.settings = settings or get_settings()
        self._transport = transport

        if not self.settings.transcription_api_url.strip():
            raise ConfigurationError(
                "transcription_api_url",
                "no speech-to-text endpoint configured"
            )

        if not self.settings.transcription_api_key:
            logger.warning(
                "No transcription API key configured. Set EXAMSCRIBE_TRANSCRIPTION_API_KEY."
            )

    async def atranscribe(self, audio_bytes: bytes, filename: str) -> TranscriptionResult:
        self._validate_audio(audio_bytes, filename)
        logger.info(
            f"Transcribing {filename} ({len(audio_bytes) / 1024:.0f}KB) "
            f"with {self.settings.transcription_model}"
        )

        headers = {}
        if self.settings.transcription_api_key:
            headers["Authorization"] = f"Bearer {self.settings.transcription_api_key}"

        form = {
            "model": self.settings.transcription_model,
            "language": self.settings.transcription_language,
            "response_format": "verbose_json",
        }
        files = {"file": (filename, audio_bytes)}

        try:
            async with httpx.AsyncClient(
                timeout=self.settings.transcription_timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(
                    self.settings.transcription_api_url,
                    headers=headers,
                    data=form,
                    files=files,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            raise TranscriptionFailedError(
                filename,
                f"speech API returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TranscriptionFailedError(filename, str(e) or type(e).__name__) from e

        segments = segments_from_response(data)
        result = TranscriptionResult(
            text=(data.get("text") or "").strip(),
            language=self.settings.transcription_language,
            duration_seconds=float(data.get("duration") or (segments[-1].end if segments else 0.0)),
            segments=segments,
        )

        logger.info(
            f"Transcription complete: {len(result.text)} chars, {len(segments)} segments"
        )
        return result

    def _validate_audio(self, audio_bytes: bytes, filename: str) -> None:
        """
        Validate the clip before spending an API call on it.

        Checks emptiness, extension and upload size.
        """
        if not audio_bytes:
            raise EmptyAudioError(filename)

        extension = Path(filename).suffix.lower().lstrip('.')
        if extension not in self.settings.supported_audio_formats:
            raise UnsupportedAudioFormatError(
                filename=filename,
                format=extension or "unknown",
                supported_formats=self.settings.supported_audio_formats
            )

        size_mb = len(audio_bytes) / (1024 * 1024)
        if size_mb > self.settings.max_audio_size_mb:
            raise AudioTooLargeError(filename, size_mb, self.settings.max_audio_size_mb)

        logger.debug(f"Audio validated: {filename}")


class MockTranscriber:
    """
    Mock transcriber for testing.

    Usage in tests:
        transcriber = MockTranscriber(segments_text=["Chào bác sĩ", "Bạn bị gì?"])
        result = await transcriber.atranscribe(b"...", "visit.wav")
    """

    def __init__(self, segments_text: Optional[list[str]] = None, error: Optional[Exception] = None):
        self.segments_text = segments_text if segments_text is not None else [
            "Chào bác sĩ, tôi bị đau thượng vịt ba ngày nay.",
            "Bạn có sốt không?",
            "Dạ không, chỉ đau bụng thôi.",
        ]
        self.error = error
        self.call_count = 0

    async def atranscribe(self, audio_bytes: bytes, filename: str) -> TranscriptionResult:
        self.call_count += 1
        await asyncio.sleep(0.01)
        if self.error is not None:
            raise self.error

        segments = []
        for i, text in enumerate(self.segments_text):
            segments.append(TranscriptSegment(start=i * 5.0, end=i * 5.0 + 4.5, raw_text=text))
        return TranscriptionResult(
            text=" ".join(self.segments_text),
            language="vi",
            duration_seconds=len(segments) * 5.0,
            segments=segments,
        )


# =============================================================================
# Factory Function
# =============================================================================

def create_transcriber(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
) -> TranscriberProtocol:
    """
    Factory function to create the appropriate transcriber.

    Args:
        settings: Application settings
        use_mock: If True, returns a mock transcriber

    Returns:
        A transcriber instance
    """
    if use_mock:
        logger.info("Creating mock transcriber")
        return MockTranscriber()

    logger.info("Creating remote Whisper transcriber")
    return RemoteWhisperTranscriber(settings=settings)
