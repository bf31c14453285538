"""
Speaker Attribution Module

Assigns a dialogue role (clinician or patient) to every transcript segment
so the Scribe never confuses the doctor's questions with the patient's
complaints.

Two passes:
1. apply_heuristic_roles(): cheap rule-based default from Vietnamese cue
   phrases ("Chào bác sĩ", "tôi bị ...", questions)
2. LLMSpeakerAttributor.aattribute(): one LLM call over the whole dialogue
   that overrides the defaults; optional, and advisory only

The LLM pass never raises. Any call or parse failure returns the input
segments unchanged.
"""

import logging
from typing import List, Optional, Protocol

from config import Settings, get_settings
from core.llm import ChatServiceProtocol, extract_json_array
from models import SpeakerRole, TranscriptSegment
from prompts import ROLE_SYNONYMS, get_speaker_attribution_prompt

logger = logging.getLogger(__name__)


# =============================================================================
# Rule-based Pass
# =============================================================================

PATIENT_CUES = (
    "chào bác sĩ",
    "tôi đau",
    "tôi bị",
    "tôi thấy",
    "em bị",
    "cháu bị",
)

CLINICIAN_CUES = (
    "có triệu chứng gì",
    "có sốt không",
    "uống thuốc gì chưa",
    "bị bao lâu",
    "tôi kê",
    "chẩn đoán",
)


def guess_role(text: str) -> Optional[SpeakerRole]:
    """
    Guess a role from cue phrases alone.

    Patient cues win over question marks: "Chào bác sĩ, tôi bị đau bụng?"
    is still the patient.

    Returns:
        The guessed role, or None when no cue matches
    """
    lowered = text.lower().strip()
    if not lowered:
        return None
    if any(cue in lowered for cue in PATIENT_CUES):
        return SpeakerRole.PATIENT
    if lowered.endswith("?") or any(cue in lowered for cue in CLINICIAN_CUES):
        return SpeakerRole.CLINICIAN
    return None


def apply_heuristic_roles(segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
    """Label segments that carry an obvious cue; others keep their role."""
    labelled = []
    for seg in segments:
        role = guess_role(seg.raw_text)
        labelled.append(seg.model_copy(update={"role": role}) if role else seg)
    return labelled


def parse_role(value) -> Optional[SpeakerRole]:
    """Map a model-provided role word to SpeakerRole (None if unknown)."""
    if not isinstance(value, str):
        return None
    mapped = ROLE_SYNONYMS.get(value.lower().strip())
    return SpeakerRole(mapped) if mapped else None


# =============================================================================
# Protocol Definition
# =============================================================================

class SpeakerAttributorProtocol(Protocol):
    """Protocol defining the interface for speaker attribution services."""

    async def aattribute(self, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
        """
        Assign roles to segments.

        Must never raise: failures return the input unchanged.
        """
        ...


# =============================================================================
# LLM Implementation
# =============================================================================

class LLMSpeakerAttributor:
    """
    Role attribution with a single LLM call.

    The model sees every segment as `[index] "text"` and answers with a JSON
    array of {index, role}. Indices it omits keep their prior role.
    """

    def __init__(
        self,
        chat_service: ChatServiceProtocol,
        settings: Optional[Settings] = None,
        enabled: Optional[bool] = None,
    ):
        self.chat_service = chat_service
        self.settings = settings or get_settings()
        self.enabled = self.settings.enable_role_refinement if enabled is None else enabled

    async def aattribute(self, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
        if not segments:
            return segments
        if not self.enabled:
            logger.info("Role refinement disabled, keeping rule-based roles")
            return segments

        system_prompt, user_prompt = get_speaker_attribution_prompt(segments)

        try:
            logger.info(f"Attributing speaker roles for {len(segments)} segments")
            response = await self.chat_service.acomplete(
                user_prompt,
                system=system_prompt or None,
                temperature=self.settings.attributor_temperature,
            )
            logger.debug(f"Role attribution response: {response[:200]}")
            assignments = extract_json_array(response)
        except Exception as e:
            logger.warning(f"Speaker attribution failed, keeping original roles: {e}")
            return segments

        roles_by_index = {}
        for item in assignments:
            if not isinstance(item, dict):
                continue
            try:
                index = int(item.get("index"))
            except (TypeError, ValueError):
                continue
            role = parse_role(item.get("role"))
            if role is not None:
                roles_by_index[index] = role

        updated = []
        for i, seg in enumerate(segments):
            role = roles_by_index.get(i)
            if role is not None and role != seg.role:
                logger.debug(f"   [{i}] {seg.role.value} -> {role.value}")
                seg = seg.model_copy(update={"role": role})
            updated.append(seg)

        logger.info(f"Speaker attribution complete: {len(roles_by_index)}/{len(segments)} segments assigned")
        return updated


class MockSpeakerAttributor:
    """Mock attributor for testing: applies a fixed role sequence, cycling."""

    def __init__(self, roles: Optional[List[SpeakerRole]] = None):
        self.roles = roles or [SpeakerRole.CLINICIAN, SpeakerRole.PATIENT]
        self.call_count = 0

    async def aattribute(self, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
        self.call_count += 1
        return [
            seg.model_copy(update={"role": self.roles[i % len(self.roles)]})
            for i, seg in enumerate(segments)
        ]


# =============================================================================
# Factory Function
# =============================================================================

def create_speaker_attributor(
    chat_service: ChatServiceProtocol,
    settings: Optional[Settings] = None,
    use_mock: bool = False,
) -> SpeakerAttributorProtocol:
    """
    Factory function to create the speaker attributor.

    Args:
        chat_service: LLM backend used by the real attributor
        settings: Application settings
        use_mock: If True, returns a fixed-sequence mock

    Returns:
        A speaker attributor instance
    """
    if use_mock:
        logger.info("Creating mock speaker attributor")
        return MockSpeakerAttributor()
    return LLMSpeakerAttributor(chat_service=chat_service, settings=settings)
