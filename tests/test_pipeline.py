import pytest

from core.pipeline import create_pipeline
from exceptions import TranscriptionFailedError
from models import ProcessingStatus, SpeakerRole, StructuredNote
from transcriber import MockTranscriber


@pytest.fixture
def pipeline(settings):
    return create_pipeline(settings, use_mock=True)


async def test_audio_to_labelled_corrected_transcript(pipeline):
    result = await pipeline.aprocess_audio(b"fake-audio", "visit.wav")

    assert result.status == ProcessingStatus.COMPLETED
    assert [seg.role for seg in result.segments] == [
        SpeakerRole.PATIENT, SpeakerRole.CLINICIAN, SpeakerRole.PATIENT
    ]
    assert result.segments[0].raw_text.endswith("đau thượng vịt ba ngày nay.")
    assert "đau thượng vị ba ngày" in result.segments[0].clean_text
    assert result.transcript.splitlines()[1] == "Bác sĩ: Bạn có sốt không?"


async def test_progress_reported_in_stage_order(pipeline):
    updates = []

    async def on_progress(status, message, percent):
        updates.append((status, percent))

    await pipeline.aprocess_audio(b"fake-audio", "visit.wav", progress_callback=on_progress)

    statuses = [status for status, _ in updates]
    assert statuses == [
        ProcessingStatus.TRANSCRIBING,
        ProcessingStatus.ATTRIBUTING,
        ProcessingStatus.NORMALIZING,
        ProcessingStatus.COMPLETED,
    ]
    percents = [percent for _, percent in updates]
    assert percents == sorted(percents)
    assert percents[-1] == 100


async def test_silence_completes_without_llm_calls(pipeline):
    pipeline.transcriber = MockTranscriber(segments_text=[])

    result = await pipeline.aprocess_audio(b"fake-audio", "visit.wav")

    assert result.status == ProcessingStatus.COMPLETED
    assert result.segments == []
    assert result.transcript == ""


async def test_transcription_failure_propagates(pipeline):
    pipeline.transcriber = MockTranscriber(error=TranscriptionFailedError("visit.wav", "boom"))
    updates = []

    with pytest.raises(TranscriptionFailedError):
        await pipeline.aprocess_audio(
            b"fake-audio", "visit.wav",
            progress_callback=lambda status, message, percent: updates.append(status),
        )

    assert updates[-1] == ProcessingStatus.FAILED


async def test_audio_to_note_and_comparison(pipeline):
    audio = await pipeline.aprocess_audio(b"fake-audio", "visit.wav")
    note = await pipeline.arun_clinical_note_pipeline(audio.transcript)

    doctor = StructuredNote(assessment=note.soap.assessment, plan="Theo dõi thêm")
    comparison = await pipeline.arun_comparison(note.soap, note.icd_codes, doctor, ["K29.7"])

    assert comparison.per_field_score["assessment"] == 100
    assert comparison.code_overlap.exact_matches == ["K29.7"]
    assert 0 <= comparison.match_score <= 100
