"""
Analysis Endpoints
==================

Stateless access to the clinical note pipeline and the comparison engine.
"""

import logging

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_pipeline
from api.middleware.rate_limiter import limiter, analysis_limit
from api.models.requests import AnalyzeRequest, CompareRequest
from core.pipeline import ExaminationPipeline
from models import ClinicalNoteResult, ComparisonResult

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/analyze", response_model=ClinicalNoteResult)
@limiter.limit(analysis_limit)
async def analyze_transcript(
    request: Request,
    body: AnalyzeRequest,
    pipeline: ExaminationPipeline = Depends(get_pipeline)
) -> ClinicalNoteResult:
    """
    Generate a SOAP note, ICD-10 codes and advice from a transcript.

    Stages that degraded are listed in `errors`. An Advisor failure
    fails the whole request with 503.

    Args:
        request: Raw request (used by the rate limiter)
        body: Transcript to analyze
        pipeline: Injected pipeline instance

    Returns:
        ClinicalNoteResult
    """
    logger.info(f"Analysis requested ({len(body.transcript)} chars)")
    return await pipeline.arun_clinical_note_pipeline(body.transcript)


@router.post("/compare", response_model=ComparisonResult)
async def compare_results(
    body: CompareRequest,
    pipeline: ExaminationPipeline = Depends(get_pipeline)
) -> ComparisonResult:
    """Score an AI note and codes against the clinician's, without persisting."""
    return await pipeline.arun_comparison(
        body.ai_note, body.ai_codes, body.doctor_note, body.doctor_codes
    )
