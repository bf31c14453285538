import json

import httpx
import pytest

from exceptions import (
    AudioTooLargeError,
    ConfigurationError,
    EmptyAudioError,
    TranscriptionFailedError,
    UnsupportedAudioFormatError,
)
from models import SpeakerRole
from transcriber import RemoteWhisperTranscriber, segments_from_response


VERBOSE_JSON = {
    "text": "Chào bác sĩ. Anh bị bao lâu rồi?",
    "duration": 6.2,
    "segments": [
        {"start": 0.0, "end": 2.1, "text": " Chào bác sĩ."},
        {"start": 2.1, "end": 6.2, "text": " Anh bị bao lâu rồi?"},
    ],
}


def _transcriber(settings, handler):
    return RemoteWhisperTranscriber(settings, transport=httpx.MockTransport(handler))


async def test_posts_multipart_and_parses_segments(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.content
        return httpx.Response(200, json=VERBOSE_JSON)

    result = await _transcriber(settings, handler).atranscribe(b"RIFF....", "visit.wav")

    assert seen["auth"] == "Bearer test-key"
    assert b"verbose_json" in seen["body"]
    assert settings.transcription_model.encode() in seen["body"]
    assert [seg.raw_text for seg in result.segments] == ["Chào bác sĩ.", "Anh bị bao lâu rồi?"]
    assert all(seg.role == SpeakerRole.UNLABELED for seg in result.segments)
    assert result.duration_seconds == pytest.approx(6.2)


def test_text_without_segments_becomes_one_segment():
    segments = segments_from_response({"text": "Tôi đau đầu"})
    assert len(segments) == 1
    assert (segments[0].start, segments[0].end) == (0.0, 0.0)
    assert segments[0].raw_text == "Tôi đau đầu"


def test_empty_text_yields_no_segments():
    assert segments_from_response({"text": "  ", "segments": []}) == []


async def test_http_error_raises_transcription_failed(settings):
    def handler(request):
        return httpx.Response(429, json={"error": "rate limited"})

    with pytest.raises(TranscriptionFailedError) as exc_info:
        await _transcriber(settings, handler).atranscribe(b"abc", "visit.mp3")

    assert exc_info.value.details["status_code"] == 429


async def test_network_error_raises_transcription_failed(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused")

    with pytest.raises(TranscriptionFailedError):
        await _transcriber(settings, handler).atranscribe(b"abc", "visit.mp3")


async def test_invalid_json_raises_transcription_failed(settings):
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(TranscriptionFailedError):
        await _transcriber(settings, handler).atranscribe(b"abc", "visit.mp3")


@pytest.mark.parametrize("audio, filename, error", [
    (b"", "visit.wav", EmptyAudioError),
    (b"abc", "notes.txt", UnsupportedAudioFormatError),
    (b"abc", "noextension", UnsupportedAudioFormatError),
])
async def test_invalid_audio_rejected_before_request(settings, audio, filename, error):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=VERBOSE_JSON)

    with pytest.raises(error):
        await _transcriber(settings, handler).atranscribe(audio, filename)

    assert calls == []


async def test_oversized_audio_rejected(settings):
    settings = settings.model_copy(update={"max_audio_size_mb": 0.001})

    def handler(request):
        return httpx.Response(200, content=json.dumps(VERBOSE_JSON))

    with pytest.raises(AudioTooLargeError):
        await _transcriber(settings, handler).atranscribe(b"x" * 4096, "visit.wav")


def test_blank_endpoint_is_a_configuration_error(settings):
    settings = settings.model_copy(update={"transcription_api_url": "  "})

    with pytest.raises(ConfigurationError) as excinfo:
        RemoteWhisperTranscriber(settings)

    assert excinfo.value.details["setting_name"] == "transcription_api_url"
