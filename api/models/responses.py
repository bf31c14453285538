"""
API Response Models
===================

Pydantic models for API responses. Domain models (ClinicalNoteResult,
ExaminationSession, MedicalRecord, ComparisonRecord, ComparisonResult)
are returned as-is; only shapes specific to the HTTP layer live here.
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional

from models import TranscriptSegment


class TranscribeResponse(BaseModel):
    """Response model for the audio transcription endpoint."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "segments": [
                    {
                        "start": 0.0,
                        "end": 3.2,
                        "role": "patient",
                        "raw_text": "Chào bác sĩ, tôi bị đau thượng vịt",
                        "clean_text": "Chào bác sĩ, tôi bị đau thượng vị"
                    }
                ],
                "transcript": "Bệnh nhân: Chào bác sĩ, tôi bị đau thượng vị",
                "raw_text": "Chào bác sĩ, tôi bị đau thượng vịt",
                "num_segments": 1,
                "processing_time_seconds": 4.2
            }
        }
    )

    segments: List[TranscriptSegment] = Field(default_factory=list)
    transcript: str = Field(default="", description="Role-labelled transcript")
    raw_text: str = Field(default="", description="Unprocessed speech-to-text output")
    num_segments: int = Field(default=0)
    processing_time_seconds: Optional[float] = Field(default=None)
