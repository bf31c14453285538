"""
Transcription Endpoints
=======================

Audio upload to role-labelled, term-corrected transcript.
"""

import logging

from fastapi import APIRouter, Depends, UploadFile, File

from api.dependencies import get_pipeline
from api.models.responses import TranscribeResponse
from core.pipeline import ExaminationPipeline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/transcribe", response_model=TranscribeResponse)
async def transcribe_audio(
    file: UploadFile = File(..., description="Consultation recording (mp3, wav, m4a, ...)"),
    pipeline: ExaminationPipeline = Depends(get_pipeline)
) -> TranscribeResponse:
    """
    Transcribe a consultation recording.

    The clip is sent to the speech-to-text service, speakers are
    attributed to clinician or patient, and medical terms are corrected.

    Args:
        file: Uploaded audio file
        pipeline: Injected pipeline instance

    Returns:
        TranscribeResponse with segments and the labelled transcript
    """
    audio_bytes = await file.read()
    filename = file.filename or "audio"
    logger.info(f"Transcription requested for {filename} ({len(audio_bytes)} bytes)")

    result = await pipeline.aprocess_audio(audio_bytes, filename)

    return TranscribeResponse(
        segments=result.segments,
        transcript=result.transcript,
        raw_text=result.transcription.text if result.transcription else "",
        num_segments=len(result.segments),
        processing_time_seconds=result.processing_time_seconds
    )
