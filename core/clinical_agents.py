"""
Clinical Agents for ExamScribe AI
=================================

The three LLM agents of the clinical note pipeline:

- ScribeAgent:   consultation transcript -> StructuredNote (SOAP)
- CoderAgent:    assessment + subjective -> ICD-10 codes
- AdvisorAgent:  StructuredNote + retrieved protocols -> advice + references

Failure policy differs per agent and callers rely on it:

- Scribe and Coder never raise. A failed call or unparseable reply returns
  a sentinel result (SCRIBE_ERROR_MARKER in `plan`, or the single
  CODER_ERROR_SENTINEL code) so the clinician sees the gap instead of an
  empty-but-valid result.
- Advisor does not catch anything. Advice has no safe degraded form, so
  retrieval or generation errors propagate to the pipeline.
"""

import json
import logging
from typing import List, Optional

from config import Settings, get_settings
from core.knowledge_retriever import KnowledgeRetriever
from core.llm import ChatServiceProtocol, extract_json_object, strip_code_fences
from models import SOAP_FIELDS, AdvisoryResult, StructuredNote
from prompts import get_advisor_prompt, get_coder_prompt, get_scribe_prompt

logger = logging.getLogger(__name__)


SCRIBE_ERROR_MARKER = "Error generating SOAP note"
CODER_ERROR_SENTINEL = "Error retrieving ICD codes"


def scribe_failed(note: StructuredNote) -> bool:
    """True when `note` is the Scribe's error sentinel."""
    return (
        note.plan == SCRIBE_ERROR_MARKER
        and not (note.subjective or note.objective or note.assessment)
    )


def coder_failed(codes: List[str]) -> bool:
    """True when `codes` is the Coder's error sentinel."""
    return codes == [CODER_ERROR_SENTINEL]


# =============================================================================
# Scribe
# =============================================================================

class ScribeAgent:
    """
    Structured note extraction.

    One JSON-mode LLM call; the reply must be an object with the four SOAP
    keys. Missing keys become empty strings.
    """

    def __init__(self, chat_service: ChatServiceProtocol, settings: Optional[Settings] = None):
        self.chat_service = chat_service
        self.settings = settings or get_settings()

    async def agenerate(self, transcript: str) -> StructuredNote:
        """
        Generate a SOAP note from the assembled transcript.

        Args:
            transcript: Role-labelled consultation text

        Returns:
            The note, or the error sentinel note on failure
        """
        logger.info(f"Scribe agent working ({len(transcript)} chars, model: {self.settings.ollama_model})")
        system_prompt, user_prompt = get_scribe_prompt(transcript, language=self.settings.note_language)

        try:
            response = await self.chat_service.acomplete(
                user_prompt,
                system=system_prompt or None,
                json_mode=True,
                temperature=self.settings.scribe_temperature,
            )
            logger.debug(f"Scribe raw output: {response[:300]}")
            parsed = extract_json_object(response)
            if not isinstance(parsed, dict):
                raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
            note = StructuredNote(**{name: parsed.get(name, "") for name in SOAP_FIELDS})
        except Exception as e:
            logger.warning(f"Scribe agent failed, returning error note: {e}")
            return StructuredNote(plan=SCRIBE_ERROR_MARKER)

        logger.info("Scribe agent produced SOAP note")
        return note


# =============================================================================
# ICD-10 Coder
# =============================================================================

class CoderAgent:
    """
    ICD-10 code suggestion.

    Accepts `{"codes": [...]}`, `{"icd_codes": [...]}` or a bare array.
    Entries keep their descriptive suffix ("K29.7 - Viêm dạ dày");
    normalization to the bare code happens at comparison time.
    """

    def __init__(self, chat_service: ChatServiceProtocol, settings: Optional[Settings] = None):
        self.chat_service = chat_service
        self.settings = settings or get_settings()

    @staticmethod
    def parse_codes(response: str) -> List[str]:
        """
        Pull the code list out of a model reply.

        Raises:
            ValueError: If the reply is not JSON
        """
        cleaned = strip_code_fences(response)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            parsed = extract_json_object(cleaned)

        if isinstance(parsed, list):
            codes = parsed
        elif isinstance(parsed, dict):
            codes = parsed.get("codes") or parsed.get("icd_codes") or []
        else:
            codes = []

        if not isinstance(codes, list):
            return []
        return [str(code).strip() for code in codes if str(code).strip()]

    async def acode(self, note: StructuredNote) -> List[str]:
        """
        Suggest ICD-10 codes for a note.

        Returns:
            Codes (possibly empty when none apply), or
            [CODER_ERROR_SENTINEL] on failure
        """
        logger.info("ICD-10 coder agent working")
        system_prompt, user_prompt = get_coder_prompt(note)

        try:
            response = await self.chat_service.acomplete(
                user_prompt,
                system=system_prompt or None,
                json_mode=True,
                temperature=self.settings.coder_temperature,
            )
            logger.debug(f"ICD-10 raw output: {response[:300]}")
            codes = self.parse_codes(response)
        except Exception as e:
            logger.warning(f"ICD-10 coder agent failed, returning sentinel: {e}")
            return [CODER_ERROR_SENTINEL]

        logger.info(f"ICD-10 coder agent suggested {len(codes)} codes")
        return codes


# =============================================================================
# Advisor (retrieval-augmented)
# =============================================================================

class AdvisorAgent:
    """
    Retrieval-augmented clinical advice.

    Queries the knowledge retriever with the subjective section, then asks
    the expert model for advice written entirely in the note language.
    Exceptions propagate.
    """

    def __init__(
        self,
        chat_service: ChatServiceProtocol,
        retriever: KnowledgeRetriever,
        settings: Optional[Settings] = None,
    ):
        self.chat_service = chat_service
        self.retriever = retriever
        self.settings = settings or get_settings()

    async def aadvise(self, note: StructuredNote) -> AdvisoryResult:
        logger.info(f"Advisor agent working (model: {self.settings.ollama_expert_model})")

        chunks = await self.retriever.aretrieve(note.subjective)

        references: List[str] = []
        for chunk in chunks:
            if chunk.source not in references:
                references.append(chunk.source)

        system_prompt, user_prompt = get_advisor_prompt(
            note,
            [chunk.content for chunk in chunks],
            language=self.settings.note_language,
        )
        narrative = await self.chat_service.acomplete(
            user_prompt,
            system=system_prompt or None,
            temperature=self.settings.advisor_temperature,
            model=self.settings.ollama_expert_model,
        )

        logger.info(f"Advisor agent done ({len(chunks)} context chunks, references: {references})")
        return AdvisoryResult(narrative=(narrative or "").strip(), references=references)
