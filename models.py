"""
Domain Models for ExamScribe AI
===============================

This module defines the core data structures used throughout the application.
We use Pydantic for several important reasons:

1. **Validation**: Automatically validates data types and constraints
2. **Serialization**: Easy conversion to/from JSON for the API and session store
3. **Immutability**: Transcript segments and comparison results are frozen

Design Principle: These models are "pure" - they have no dependencies on
external services, databases, or frameworks. This makes them highly reusable
and testable.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


SOAP_FIELDS = ("subjective", "objective", "assessment", "plan")


class ProcessingStatus(str, Enum):
    """
    Enum for tracking the status of an examination analysis.

    Using str, Enum allows JSON serialization while maintaining type safety.
    """
    PENDING = "pending"
    TRANSCRIBING = "transcribing"
    ATTRIBUTING = "attributing"
    NORMALIZING = "normalizing"
    GENERATING = "generating"
    COMPARING = "comparing"
    COMPLETED = "completed"
    FAILED = "failed"


class SpeakerRole(str, Enum):
    """Dialogue role of a transcript segment."""
    CLINICIAN = "clinician"
    PATIENT = "patient"
    UNLABELED = "unlabeled"

    @property
    def label(self) -> str:
        """Vietnamese display label used when assembling transcripts."""
        return ROLE_LABELS[self]


ROLE_LABELS = {
    SpeakerRole.CLINICIAN: "Bác sĩ",
    SpeakerRole.PATIENT: "Bệnh nhân",
    SpeakerRole.UNLABELED: "Người nói",
}


class TranscriptSegment(BaseModel):
    """
    A single timestamped utterance of the consultation.

    Produced by the transcriber (start/end/raw_text), then copied with a
    role by the Speaker Attributor and with clean_text by the Text
    Normalizer. Instances are frozen; each stage returns new copies.

    Attributes:
        start: Segment start time in seconds
        end: Segment end time in seconds
        role: Clinician, patient or unlabeled
        raw_text: Text as returned by speech-to-text
        clean_text: Text after medical term correction
    """
    start: float = Field(default=0.0, description="Segment start time in seconds")
    end: float = Field(default=0.0, description="Segment end time in seconds")
    role: SpeakerRole = Field(
        default=SpeakerRole.UNLABELED,
        description="Dialogue role of the speaker"
    )
    raw_text: str = Field(default="", description="Text as transcribed")
    clean_text: str = Field(default="", description="Text after normalization")

    @property
    def duration(self) -> float:
        """Returns the duration of this segment in seconds."""
        return self.end - self.start

    @property
    def text(self) -> str:
        """Best available text: the corrected text when present."""
        return self.clean_text or self.raw_text

    def to_labeled_text(self) -> str:
        """
        Returns formatted text with the role label.

        Example:
            "Bệnh nhân: Tôi bị đau bụng ba ngày nay."
        """
        return f"{self.role.label}: {self.text}" if self.text else ""

    class Config:
        from_attributes = True
        frozen = True


class TranscriptionResult(BaseModel):
    """
    Represents the output of the transcription service.

    Keeping this separate from the clinical note allows us to:
    1. Re-run attribution/normalization without another speech API call
    2. Debug issues at each stage separately
    """
    text: str = Field(default="", description="The transcribed text from audio")
    language: str = Field(default="vi", description="Language code")
    duration_seconds: float = Field(default=0.0, description="Audio duration in seconds")
    segments: List[TranscriptSegment] = Field(
        default_factory=list,
        description="Ordered segments, chronological"
    )

    class Config:
        from_attributes = True


def format_transcript(segments: List[TranscriptSegment]) -> str:
    """Join segments into the transcript handed to the clinical note pipeline."""
    lines = [seg.to_labeled_text() for seg in segments if seg.text.strip()]
    return "\n".join(lines)


class StructuredNote(BaseModel):
    """
    SOAP Note - The standard medical documentation format.

    SOAP stands for:
    - Subjective: Patient's reported symptoms and history
    - Objective: Observable/measurable findings
    - Assessment: Diagnosis or differential diagnoses
    - Plan: Treatment plan and next steps

    Missing fields are carried as empty strings, never None, so downstream
    comparison and persistence never special-case absent sections.
    """
    subjective: str = Field(
        default="",
        description="Patient's reported symptoms, history, and concerns"
    )
    objective: str = Field(
        default="",
        description="Observable findings, vital signs, examination results"
    )
    assessment: str = Field(
        default="",
        description="Clinical assessment, diagnosis, or differential diagnoses"
    )
    plan: str = Field(
        default="",
        description="Treatment plan, medications, follow-up instructions"
    )

    @field_validator(*SOAP_FIELDS, mode="before")
    @classmethod
    def coerce_to_text(cls, v):
        """Models sometimes return null or bullet lists for a section."""
        if v is None:
            return ""
        if isinstance(v, list):
            return "\n".join(str(item) for item in v)
        if not isinstance(v, str):
            return str(v)
        return v

    def to_formatted_string(self) -> str:
        """
        Returns a nicely formatted SOAP note for terminal display.
        """
        return f"""
╔══════════════════════════════════════════════════════════════════╗
║                         SOAP NOTE                                ║
╠══════════════════════════════════════════════════════════════════╣
║ SUBJECTIVE                                                       ║
╟──────────────────────────────────────────────────────────────────╢
{self._wrap_text(self.subjective)}
╟──────────────────────────────────────────────────────────────────╢
║ OBJECTIVE                                                        ║
╟──────────────────────────────────────────────────────────────────╢
{self._wrap_text(self.objective)}
╟──────────────────────────────────────────────────────────────────╢
║ ASSESSMENT                                                       ║
╟──────────────────────────────────────────────────────────────────╢
{self._wrap_text(self.assessment)}
╟──────────────────────────────────────────────────────────────────╢
║ PLAN                                                             ║
╟──────────────────────────────────────────────────────────────────╢
{self._wrap_text(self.plan)}
╚══════════════════════════════════════════════════════════════════╝
"""

    def _wrap_text(self, text: str, width: int = 66) -> str:
        """Helper to wrap text for formatted output."""
        lines = []
        for paragraph in text.split('\n'):
            words = paragraph.split()
            current_line = "║ "
            for word in words:
                if len(current_line) + len(word) + 1 <= width:
                    current_line += word + " "
                else:
                    lines.append(current_line.ljust(67) + "║")
                    current_line = "║ " + word + " "
            if current_line.strip("║ "):
                lines.append(current_line.ljust(67) + "║")
        return '\n'.join(lines) if lines else "║" + " " * 66 + "║"


class RetrievedChunk(BaseModel):
    """A protocol excerpt returned by the knowledge retriever."""
    content: str = Field(..., description="Chunk text")
    source: str = Field(..., description="Protocol identifier (file stem)")


class AdvisoryResult(BaseModel):
    """
    Output of the Advisor agent.

    Attributes:
        narrative: Clinical advice, written in the note language
        references: Protocol identifiers the advice was grounded on
    """
    narrative: str = Field(default="", description="Clinical advice text")
    references: List[str] = Field(
        default_factory=list,
        description="Source identifiers of retrieved protocols"
    )


class ClinicalNoteResult(BaseModel):
    """
    Result of one clinical note pipeline invocation.

    `errors` names the stages that degraded to a sentinel output so the
    caller can highlight them for manual completion.
    """
    soap: StructuredNote = Field(default_factory=StructuredNote)
    icd_codes: List[str] = Field(default_factory=list, description="ICD-10 codes")
    medical_advice: str = Field(default="", description="Advisor narrative")
    references: List[str] = Field(default_factory=list)
    errors: List[str] = Field(
        default_factory=list,
        description="Stages that returned a sentinel instead of a result"
    )
    processing_time_seconds: Optional[float] = Field(default=None)


class CodeOverlap(BaseModel):
    """Agreement between AI-suggested and clinician-selected ICD-10 codes."""
    exact_matches: List[str] = Field(default_factory=list)
    ai_only_codes: List[str] = Field(default_factory=list)
    doctor_only_codes: List[str] = Field(default_factory=list)
    score: float = Field(..., ge=0.0, le=100.0, description="Jaccard similarity x 100")

    class Config:
        frozen = True


class ComparisonResult(BaseModel):
    """
    Scored difference between an AI note and the clinician's note.

    Computed once per (AI result, doctor result) pair and never updated;
    a re-score produces a new record.
    """
    match_score: float = Field(..., ge=0.0, le=100.0)
    per_field_score: Dict[str, float] = Field(
        ...,
        description="Semantic similarity per SOAP section (0-100)"
    )
    code_overlap: CodeOverlap
    difference_notes: List[str] = Field(default_factory=list)

    class Config:
        frozen = True


class AudioProcessingResult(BaseModel):
    """Audio to transcript result of the speech front half of the pipeline."""
    id: str = Field(..., description="Processing identifier")
    status: ProcessingStatus = Field(default=ProcessingStatus.PENDING)
    transcription: Optional[TranscriptionResult] = Field(default=None)
    segments: List[TranscriptSegment] = Field(default_factory=list)
    transcript: str = Field(default="", description="Role-labelled transcript")
    processing_time_seconds: Optional[float] = Field(default=None)

    class Config:
        from_attributes = True
        frozen = False


# =============================================================================
# Session and Persistence Records
# =============================================================================

class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class RecordStatus(str, Enum):
    DRAFT = "draft"
    FINAL = "final"


def _new_id() -> str:
    return str(uuid.uuid4())


class ExaminationSession(BaseModel):
    """
    One patient examination.

    Holds at most one AI analysis and one clinician medical record; moves
    from active to completed when the clinician finalizes the record.
    """
    id: str = Field(default_factory=_new_id)
    patient_id: Optional[str] = Field(default=None)
    status: SessionStatus = Field(default=SessionStatus.ACTIVE)
    transcript: Optional[str] = Field(default=None)
    ai_result: Optional[ClinicalNoteResult] = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MedicalRecord(BaseModel):
    """Clinician-authored note and codes for a session."""
    id: str = Field(default_factory=_new_id)
    session_id: str
    soap: StructuredNote = Field(default_factory=StructuredNote)
    icd_codes: List[str] = Field(default_factory=list)
    status: RecordStatus = Field(default=RecordStatus.DRAFT)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ComparisonRecord(BaseModel):
    """
    Persisted comparison with weak back-references to its inputs.

    `ai_results` and `doctor_results` are snapshots taken at scoring time,
    so the record stays meaningful if the session is edited later.
    """
    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    session_id: str
    medical_record_id: Optional[str] = Field(default=None)
    ai_results: Dict[str, Any]
    doctor_results: Dict[str, Any]
    comparison: ComparisonResult
    match_score: float
