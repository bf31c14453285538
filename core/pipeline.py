"""
Examination Pipeline for ExamScribe AI
======================================

The orchestration layer that the API and CLI call. It wires every
component around one chat service, one embedding model and one knowledge
retriever, all constructed once and shared.

Our Pipeline:

    Audio -> [Transcriber] -> segments -> [Speaker Attributor]
          -> [Text Normalizer] -> transcript

    Transcript -> [Scribe] -> {[Coder], [Advisor]} -> ClinicalNoteResult

    (AI result, clinician result) -> [Comparison Engine] -> ComparisonResult

The audio half and the note half are separate entry points: the clinician
reviews (or types) the transcript before analysis is requested.
"""

import inspect
import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Optional, Union

from config import Settings, get_settings
from core.comparison import ComparisonEngine
from core.knowledge_retriever import KnowledgeRetriever, create_knowledge_retriever
from core.llm import create_chat_service, create_embeddings
from core.note_pipeline import ClinicalNotePipeline, create_note_pipeline
from core.speaker_attributor import (
    SpeakerAttributorProtocol,
    apply_heuristic_roles,
    create_speaker_attributor,
)
from core.text_normalizer import create_text_normalizer
from models import (
    AudioProcessingResult,
    ClinicalNoteResult,
    ComparisonResult,
    ProcessingStatus,
    StructuredNote,
    format_transcript,
)
from transcriber import TranscriberProtocol, create_transcriber


# Set up module logger
logger = logging.getLogger(__name__)


# Type aliases for progress callbacks
ProgressCallback = Callable[[ProcessingStatus, str, int], None]
AsyncProgressCallback = Callable[[ProcessingStatus, str, int], Awaitable[None]]


class _ProgressHelper:
    """
    Internal helper for calculating overall progress of audio processing.

    Stage weights sum to 100.
    """

    TRANSCRIPTION_WEIGHT = 40   # 0-40%
    ATTRIBUTION_WEIGHT = 20     # 40-60%
    NORMALIZATION_WEIGHT = 40   # 60-100%

    @staticmethod
    def transcription_progress(stage_percent: int) -> int:
        return stage_percent * _ProgressHelper.TRANSCRIPTION_WEIGHT // 100

    @staticmethod
    def attribution_progress(stage_percent: int) -> int:
        base = _ProgressHelper.TRANSCRIPTION_WEIGHT
        return base + stage_percent * _ProgressHelper.ATTRIBUTION_WEIGHT // 100

    @staticmethod
    def normalization_progress(stage_percent: int) -> int:
        base = _ProgressHelper.TRANSCRIPTION_WEIGHT + _ProgressHelper.ATTRIBUTION_WEIGHT
        return base + stage_percent * _ProgressHelper.NORMALIZATION_WEIGHT // 100


class ExaminationPipeline:
    """
    Main entry point for processing an examination.

    Design Principles:
    -----------------
    1. Dependency Injection: every service is passed in for testability
    2. Single Responsibility: only orchestrates, agents do the work
    3. Shared singletons: the retriever is built once per process

    Usage:
        pipeline = create_pipeline()
        audio = await pipeline.aprocess_audio(data, "visit.wav")
        note = await pipeline.arun_clinical_note_pipeline(audio.transcript)
    """

    def __init__(
        self,
        settings: Settings,
        transcriber: TranscriberProtocol,
        speaker_attributor: SpeakerAttributorProtocol,
        text_normalizer,
        note_pipeline: ClinicalNotePipeline,
        comparison_engine: ComparisonEngine,
        retriever: KnowledgeRetriever,
    ):
        self.settings = settings
        self.transcriber = transcriber
        self.speaker_attributor = speaker_attributor
        self.text_normalizer = text_normalizer
        self.note_pipeline = note_pipeline
        self.comparison_engine = comparison_engine
        self.retriever = retriever

        logger.info("ExaminationPipeline initialized")

    async def astartup(self) -> None:
        """Build the knowledge base index ahead of the first analysis."""
        await self.retriever.initialize()

    # =========================================================================
    # Audio -> transcript
    # =========================================================================

    async def aprocess_audio(
        self,
        audio_bytes: bytes,
        filename: str,
        progress_callback: Optional[Union[ProgressCallback, AsyncProgressCallback]] = None
    ) -> AudioProcessingResult:
        """
        Transcribe a clip, attribute speakers and correct medical terms.

        Transcription errors propagate (there is nothing to process without
        segments); attribution and normalization degrade silently.

        Args:
            audio_bytes: Raw audio content
            filename: Original file name
            progress_callback: Optional sync or async callback
                              Signature: (status, message, percent)

        Returns:
            AudioProcessingResult with processed segments and transcript
        """
        processing_id = str(uuid.uuid4())[:8]
        start_time = time.perf_counter()
        logger.info(f"[{processing_id}] Processing audio: {filename}")

        result = AudioProcessingResult(id=processing_id, status=ProcessingStatus.TRANSCRIBING)

        await self._anotify_progress(
            progress_callback, ProcessingStatus.TRANSCRIBING,
            "Transcribing audio...", _ProgressHelper.transcription_progress(0)
        )
        try:
            transcription = await self.transcriber.atranscribe(audio_bytes, filename)
        except Exception as e:
            await self._anotify_progress(
                progress_callback, ProcessingStatus.FAILED, f"Transcription failed: {e}", 0
            )
            raise
        result.transcription = transcription

        if not transcription.segments:
            logger.info(f"[{processing_id}] Empty transcription, nothing to attribute")
            result.status = ProcessingStatus.COMPLETED
            result.processing_time_seconds = round(time.perf_counter() - start_time, 3)
            await self._anotify_progress(
                progress_callback, ProcessingStatus.COMPLETED, "No speech detected", 100
            )
            return result

        await self._anotify_progress(
            progress_callback, ProcessingStatus.ATTRIBUTING,
            f"Identifying speakers in {len(transcription.segments)} segments...",
            _ProgressHelper.attribution_progress(0)
        )
        result.status = ProcessingStatus.ATTRIBUTING
        segments = apply_heuristic_roles(transcription.segments)
        segments = await self.speaker_attributor.aattribute(segments)

        await self._anotify_progress(
            progress_callback, ProcessingStatus.NORMALIZING,
            "Correcting medical terminology...",
            _ProgressHelper.normalization_progress(0)
        )
        result.status = ProcessingStatus.NORMALIZING
        segments = await self.text_normalizer.anormalize_segments(segments)

        result.segments = segments
        result.transcript = format_transcript(segments)
        result.status = ProcessingStatus.COMPLETED
        result.processing_time_seconds = round(time.perf_counter() - start_time, 3)

        await self._anotify_progress(
            progress_callback, ProcessingStatus.COMPLETED,
            f"Audio processed in {result.processing_time_seconds:.1f}s", 100
        )
        logger.info(
            f"[{processing_id}] Audio processed: {len(segments)} segments, "
            f"{len(result.transcript)} chars in {result.processing_time_seconds:.1f}s"
        )
        return result

    # =========================================================================
    # Transcript -> clinical note
    # =========================================================================

    async def arun_clinical_note_pipeline(self, transcript: str) -> ClinicalNoteResult:
        """
        Run Scribe -> {Coder, Advisor} on a transcript.

        Raises:
            NoteValidationError: If the transcript is blank
            AnalysisFailedError: If the Advisor stage fails
        """
        return await self.note_pipeline.arun(transcript)

    # =========================================================================
    # Comparison
    # =========================================================================

    async def arun_comparison(
        self,
        ai_note: StructuredNote,
        ai_codes: Iterable[str],
        doctor_note: StructuredNote,
        doctor_codes: Iterable[str],
    ) -> ComparisonResult:
        """Score the AI note and codes against the clinician's."""
        return await self.comparison_engine.acompare(ai_note, doctor_note, ai_codes, doctor_codes)

    async def _anotify_progress(
        self,
        callback: Optional[Union[ProgressCallback, AsyncProgressCallback]],
        status: ProcessingStatus,
        message: str,
        progress: int = 0
    ) -> None:
        """
        Notify progress callback if provided (supports sync and async callbacks).

        Callback errors are logged and never interrupt processing.
        """
        if callback:
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(status, message, progress)
                else:
                    callback(status, message, progress)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")


def create_pipeline(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
) -> ExaminationPipeline:
    """
    Factory function to create a fully wired pipeline.

    Builds the chat service, embeddings and knowledge retriever once and
    hands the same instances to every consumer.

    Args:
        settings: Optional custom settings. Uses default if not provided.
        use_mock: Use scripted LLM, hashed embeddings and a canned transcriber

    Returns:
        ExaminationPipeline: Configured pipeline instance
    """
    if settings is None:
        settings = get_settings()

    chat_service = create_chat_service(settings, use_mock=use_mock)
    embeddings = create_embeddings(settings, use_mock=use_mock)
    retriever = create_knowledge_retriever(embeddings, settings)

    return ExaminationPipeline(
        settings=settings,
        transcriber=create_transcriber(settings, use_mock=use_mock),
        speaker_attributor=create_speaker_attributor(chat_service, settings),
        text_normalizer=create_text_normalizer(chat_service, settings),
        note_pipeline=create_note_pipeline(chat_service, retriever, settings),
        comparison_engine=ComparisonEngine(embeddings),
        retriever=retriever,
    )
