"""
API Request Models
==================

Pydantic models for API request validation.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional

from models import RecordStatus, StructuredNote


class AnalyzeRequest(BaseModel):
    """Request model for running the clinical note pipeline on a transcript."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "transcript": "Bệnh nhân: Tôi đau bụng 3 ngày.\nBác sĩ: Có sốt không?"
            }
        }
    )

    transcript: str = Field(
        ...,
        description="Role-labelled consultation transcript (from speech or typed)",
        min_length=1
    )


class CreateSessionRequest(BaseModel):
    """Request model for opening an examination session."""

    patient_id: Optional[str] = Field(default=None, description="External patient identifier")
    transcript: Optional[str] = Field(default=None, description="Transcript, if already available")


class SessionAnalysisRequest(BaseModel):
    """Run analysis for a session; falls back to the session's stored transcript."""

    transcript: Optional[str] = Field(default=None, description="Transcript to analyze")


class MedicalRecordRequest(BaseModel):
    """Request model for saving the clinician's note."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "soap": {
                    "subjective": "Đau thượng vị 3 ngày",
                    "objective": "Ấn đau vùng thượng vị",
                    "assessment": "Viêm dạ dày",
                    "plan": "PPI 4 tuần"
                },
                "icd_codes": ["K29.7 - Viêm dạ dày"],
                "status": "final"
            }
        }
    )

    soap: StructuredNote = Field(default_factory=StructuredNote)
    icd_codes: List[str] = Field(default_factory=list)
    status: RecordStatus = Field(default=RecordStatus.DRAFT, description="draft or final")


class CompareRequest(BaseModel):
    """Stateless comparison of an AI result with a clinician result."""

    ai_note: StructuredNote
    ai_codes: List[str] = Field(default_factory=list)
    doctor_note: StructuredNote
    doctor_codes: List[str] = Field(default_factory=list)


class SessionComparisonRequest(BaseModel):
    """
    Score a session.

    Omitted sides are taken from the session: the stored AI analysis and
    the stored clinician record.
    """

    ai_note: Optional[StructuredNote] = Field(default=None)
    ai_codes: Optional[List[str]] = Field(default=None)
    doctor_note: Optional[StructuredNote] = Field(default=None)
    doctor_codes: Optional[List[str]] = Field(default=None)
