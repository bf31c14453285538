"""
Session Manager Service
=======================

Keyed storage for examination sessions, clinician medical records and
comparison records.

Uses Redis (redis.asyncio) when `redis_url` is configured and reachable,
otherwise an in-memory dict for development and tests. Records are stored
as JSON produced by the Pydantic models, so both backends hold the same
payloads.

Keys:
    session:{id}            ExaminationSession
    record:{session_id}     MedicalRecord (one per session, overwritten)
    comparisons:{session_id} list of ComparisonRecord (append-only)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import redis.asyncio as aioredis

from config import Settings, get_settings
from exceptions import NoteValidationError, SessionNotFoundError
from models import (
    ClinicalNoteResult,
    ComparisonRecord,
    ComparisonResult,
    ExaminationSession,
    MedicalRecord,
    RecordStatus,
    SessionStatus,
    StructuredNote,
)

logger = logging.getLogger(__name__)


FINAL_RECORD_REQUIRED_MESSAGE = "Chẩn đoán và mã ICD-10 là bắt buộc khi lưu bệnh án chính thức"


def validate_medical_record(soap: StructuredNote, icd_codes: List[str], status: RecordStatus) -> None:
    """
    Business rules for saving a clinician record.

    Drafts are always accepted. A final record needs a diagnosis
    (assessment) and at least one ICD-10 code.

    Raises:
        NoteValidationError: With the user-facing message and missing fields
    """
    if status != RecordStatus.FINAL:
        return

    missing = []
    if not soap.assessment.strip():
        missing.append("assessment")
    if not [code for code in icd_codes if code and code.strip()]:
        missing.append("icd_codes")
    if missing:
        raise NoteValidationError(FINAL_RECORD_REQUIRED_MESSAGE, missing_fields=missing)


class SessionManager:
    """
    Persist sessions, records and comparisons.

    Call `aconnect()` once at startup; until then (or when Redis is not
    reachable) the in-memory store is used.
    """

    def __init__(self, settings: Optional[Settings] = None, redis_client=None):
        self.settings = settings or get_settings()
        self.ttl = self.settings.session_ttl_seconds
        self.redis_client = redis_client
        self._values: Dict[str, str] = {}
        self._lists: Dict[str, List[str]] = {}

    async def aconnect(self) -> None:
        """Connect to Redis if configured; fall back to memory on failure."""
        if self.redis_client is not None or not self.settings.redis_url:
            if self.redis_client is None:
                logger.info("Redis not configured, using in-memory session store")
            return

        client = aioredis.from_url(
            self.settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
        )
        try:
            await client.ping()
        except Exception as e:
            logger.warning(f"Redis unavailable at {self.settings.redis_url}, using in-memory store: {e}")
            await client.aclose()
            return

        self.redis_client = client
        logger.info("Session store connected to Redis")

    async def aclose(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None

    # -------------------------------------------------------------------------
    # Backend primitives
    # -------------------------------------------------------------------------

    async def _aget(self, key: str) -> Optional[str]:
        if self.redis_client is not None:
            return await self.redis_client.get(key)
        return self._values.get(key)

    async def _aset(self, key: str, value: str) -> None:
        if self.redis_client is not None:
            await self.redis_client.setex(key, self.ttl, value)
        else:
            self._values[key] = value

    async def _aappend(self, key: str, value: str) -> None:
        if self.redis_client is not None:
            await self.redis_client.rpush(key, value)
            await self.redis_client.expire(key, self.ttl)
        else:
            self._lists.setdefault(key, []).append(value)

    async def _alist(self, key: str) -> List[str]:
        if self.redis_client is not None:
            return await self.redis_client.lrange(key, 0, -1)
        return list(self._lists.get(key, []))

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def acreate_session(
        self,
        patient_id: Optional[str] = None,
        transcript: Optional[str] = None,
    ) -> ExaminationSession:
        session = ExaminationSession(patient_id=patient_id, transcript=transcript)
        await self._aset(f"session:{session.id}", session.model_dump_json())
        logger.info(f"Created examination session {session.id}")
        return session

    async def aget_session(self, session_id: str) -> ExaminationSession:
        """
        Load a session.

        Raises:
            SessionNotFoundError: If the id is unknown
        """
        data = await self._aget(f"session:{session_id}")
        if data is None:
            raise SessionNotFoundError(session_id)
        return ExaminationSession.model_validate_json(data)

    async def _asave_session(self, session: ExaminationSession) -> ExaminationSession:
        session.updated_at = datetime.utcnow()
        await self._aset(f"session:{session.id}", session.model_dump_json())
        return session

    async def asave_ai_result(
        self,
        session_id: str,
        result: ClinicalNoteResult,
        transcript: Optional[str] = None,
    ) -> ExaminationSession:
        """Attach the latest AI analysis (and the transcript it came from)."""
        session = await self.aget_session(session_id)
        session.ai_result = result
        if transcript is not None:
            session.transcript = transcript
        logger.info(f"Stored AI analysis for session {session_id}")
        return await self._asave_session(session)

    # -------------------------------------------------------------------------
    # Medical records
    # -------------------------------------------------------------------------

    async def asave_medical_record(
        self,
        session_id: str,
        soap: StructuredNote,
        icd_codes: List[str],
        status: RecordStatus = RecordStatus.DRAFT,
    ) -> MedicalRecord:
        """
        Save the clinician's note for a session.

        Validation runs before any storage access. Saving a final record
        completes the session.

        Raises:
            NoteValidationError: Final record without assessment or codes
            SessionNotFoundError: If the session does not exist
        """
        validate_medical_record(soap, icd_codes, status)
        session = await self.aget_session(session_id)

        existing = await self.aget_medical_record(session_id)
        record = MedicalRecord(
            session_id=session_id,
            soap=soap,
            icd_codes=[code.strip() for code in icd_codes if code and code.strip()],
            status=status,
        )
        if existing is not None:
            record.id = existing.id
            record.created_at = existing.created_at

        await self._aset(f"record:{session_id}", record.model_dump_json())

        if status == RecordStatus.FINAL and session.status != SessionStatus.COMPLETED:
            session.status = SessionStatus.COMPLETED
            await self._asave_session(session)
            logger.info(f"Session {session_id} completed")

        logger.info(f"Saved {status.value} medical record for session {session_id}")
        return record

    async def aget_medical_record(self, session_id: str) -> Optional[MedicalRecord]:
        data = await self._aget(f"record:{session_id}")
        return MedicalRecord.model_validate_json(data) if data else None

    # -------------------------------------------------------------------------
    # Comparisons
    # -------------------------------------------------------------------------

    async def aadd_comparison(
        self,
        session_id: str,
        comparison: ComparisonResult,
        ai_results: Dict[str, Any],
        doctor_results: Dict[str, Any],
        medical_record_id: Optional[str] = None,
    ) -> ComparisonRecord:
        """Persist a new comparison record; earlier records are never modified."""
        await self.aget_session(session_id)
        record = ComparisonRecord(
            session_id=session_id,
            medical_record_id=medical_record_id,
            ai_results=ai_results,
            doctor_results=doctor_results,
            comparison=comparison,
            match_score=comparison.match_score,
        )
        await self._aappend(f"comparisons:{session_id}", record.model_dump_json())
        logger.info(f"Stored comparison {record.id} for session {session_id} (score {record.match_score:.0f})")
        return record

    async def alist_comparisons(self, session_id: str) -> List[ComparisonRecord]:
        return [
            ComparisonRecord.model_validate_json(item)
            for item in await self._alist(f"comparisons:{session_id}")
        ]

    async def aget_latest_comparison(self, session_id: str) -> Optional[ComparisonRecord]:
        records = await self.alist_comparisons(session_id)
        return records[-1] if records else None
