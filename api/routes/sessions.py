"""
Examination Session Endpoints
=============================

Sessions tie together a transcript, the AI analysis, the clinician's
medical record and the comparisons between them.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, status

from api.dependencies import get_pipeline, get_session_manager
from api.middleware.rate_limiter import limiter, analysis_limit
from api.models.requests import (
    CreateSessionRequest,
    MedicalRecordRequest,
    SessionAnalysisRequest,
    SessionComparisonRequest,
)
from api.services.session_manager import SessionManager
from core.pipeline import ExaminationPipeline
from exceptions import NoteValidationError
from models import (
    ClinicalNoteResult,
    ComparisonRecord,
    ExaminationSession,
    MedicalRecord,
    StructuredNote,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/sessions", response_model=ExaminationSession, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: CreateSessionRequest,
    sessions: SessionManager = Depends(get_session_manager)
) -> ExaminationSession:
    """Open a new examination session."""
    return await sessions.acreate_session(patient_id=body.patient_id, transcript=body.transcript)


@router.get("/sessions/{session_id}", response_model=ExaminationSession)
async def get_session(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager)
) -> ExaminationSession:
    return await sessions.aget_session(session_id)


@router.post("/sessions/{session_id}/analysis", response_model=ClinicalNoteResult)
@limiter.limit(analysis_limit)
async def analyze_session(
    request: Request,
    session_id: str,
    body: SessionAnalysisRequest,
    pipeline: ExaminationPipeline = Depends(get_pipeline),
    sessions: SessionManager = Depends(get_session_manager)
) -> ClinicalNoteResult:
    """
    Run the clinical note pipeline for a session and store the result.

    Uses the transcript in the request body, or the one stored on the
    session when the body omits it.

    Args:
        request: Raw request (used by the rate limiter)
        session_id: Session identifier
        body: Optional transcript override
        pipeline: Injected pipeline instance
        sessions: Injected session store

    Returns:
        ClinicalNoteResult that was stored on the session
    """
    session = await sessions.aget_session(session_id)
    transcript = body.transcript if body.transcript is not None else session.transcript
    if not transcript or not transcript.strip():
        raise NoteValidationError("Session has no transcript to analyze", missing_fields=["transcript"])

    result = await pipeline.arun_clinical_note_pipeline(transcript)
    await sessions.asave_ai_result(session_id, result, transcript=transcript)
    return result


@router.put("/sessions/{session_id}/record", response_model=MedicalRecord)
async def save_medical_record(
    session_id: str,
    body: MedicalRecordRequest,
    sessions: SessionManager = Depends(get_session_manager)
) -> MedicalRecord:
    """
    Save the clinician's note and codes.

    A `final` record requires an assessment and at least one ICD-10 code,
    and completes the session.
    """
    return await sessions.asave_medical_record(
        session_id, soap=body.soap, icd_codes=body.icd_codes, status=body.status
    )


@router.get("/sessions/{session_id}/record", response_model=Optional[MedicalRecord])
async def get_medical_record(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager)
) -> Optional[MedicalRecord]:
    await sessions.aget_session(session_id)
    return await sessions.aget_medical_record(session_id)


@router.post(
    "/sessions/{session_id}/comparisons",
    response_model=ComparisonRecord,
    status_code=status.HTTP_201_CREATED
)
async def create_comparison(
    session_id: str,
    body: SessionComparisonRequest,
    pipeline: ExaminationPipeline = Depends(get_pipeline),
    sessions: SessionManager = Depends(get_session_manager)
) -> ComparisonRecord:
    """
    Score the session's AI result against the clinician's and store it.

    Sides missing from the body come from the session: the stored AI
    analysis and the stored medical record. Every call creates a new
    comparison record.

    Raises:
        NoteValidationError: If either side is unavailable
    """
    session = await sessions.aget_session(session_id)
    record = await sessions.aget_medical_record(session_id)

    ai_note, ai_codes = body.ai_note, body.ai_codes
    if session.ai_result is not None:
        ai_note = ai_note if ai_note is not None else session.ai_result.soap
        ai_codes = ai_codes if ai_codes is not None else session.ai_result.icd_codes

    doctor_note, doctor_codes = body.doctor_note, body.doctor_codes
    if record is not None:
        doctor_note = doctor_note if doctor_note is not None else record.soap
        doctor_codes = doctor_codes if doctor_codes is not None else record.icd_codes

    missing: List[str] = []
    if ai_note is None:
        missing.append("ai_note")
    if doctor_note is None:
        missing.append("doctor_note")
    if missing:
        raise NoteValidationError("Both an AI result and a clinician result are required", missing_fields=missing)

    ai_codes = ai_codes or []
    doctor_codes = doctor_codes or []
    comparison = await pipeline.arun_comparison(ai_note, ai_codes, doctor_note, doctor_codes)

    return await sessions.aadd_comparison(
        session_id,
        comparison,
        ai_results=_snapshot(ai_note, ai_codes),
        doctor_results=_snapshot(doctor_note, doctor_codes),
        medical_record_id=record.id if record else None,
    )


@router.get("/sessions/{session_id}/comparison", response_model=Optional[ComparisonRecord])
async def get_latest_comparison(
    session_id: str,
    sessions: SessionManager = Depends(get_session_manager)
) -> Optional[ComparisonRecord]:
    """Most recent comparison for the session, or null if none exists."""
    await sessions.aget_session(session_id)
    return await sessions.aget_latest_comparison(session_id)


def _snapshot(note: StructuredNote, codes: List[str]) -> dict:
    return {"soap": note.model_dump(), "icd_codes": list(codes)}
