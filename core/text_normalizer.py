"""
Medical Text Normalization
==========================

Fixes domain-specific speech-to-text mistakes ("đau thượng vịt" for
"đau thượng vị") one segment at a time through a constrained LLM rewrite.

The constraint (no summarizing, no additions, no omissions) lives in the
prompt contract; this module only enforces the fail-soft policy: on any
error, or an empty reply, the original text is kept.

Segments are processed strictly in order with a short pause after each
call so a shared provider rate limit is respected. The pause is an
`asyncio.sleep`, so other sessions keep running meanwhile.
"""

import asyncio
import logging
from typing import List, Optional

from config import Settings, get_settings
from core.llm import ChatServiceProtocol, strip_code_fences
from models import TranscriptSegment
from prompts import get_text_normalizer_prompt

logger = logging.getLogger(__name__)


class TextNormalizer:
    """
    Per-segment medical text corrector.

    Usage:
        normalizer = TextNormalizer(chat_service)
        segments = await normalizer.anormalize_segments(segments)
    """

    def __init__(
        self,
        chat_service: ChatServiceProtocol,
        settings: Optional[Settings] = None,
        delay_seconds: Optional[float] = None,
    ):
        self.chat_service = chat_service
        self.settings = settings or get_settings()
        self.delay_seconds = (
            self.settings.normalizer_delay_seconds if delay_seconds is None else delay_seconds
        )

    async def anormalize_text(self, text: str) -> str:
        """
        Correct one segment's text.

        Args:
            text: Raw transcribed text

        Returns:
            Corrected text, or `text` unchanged on failure
        """
        if not text or not text.strip():
            return text

        system_prompt, user_prompt = get_text_normalizer_prompt(text)
        try:
            response = await self.chat_service.acomplete(
                user_prompt,
                system=system_prompt,
                temperature=self.settings.normalizer_temperature,
            )
        except Exception as e:
            logger.warning(f"Text normalization failed, keeping raw text: {e}")
            return text

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        corrected = strip_code_fences(response or "")
        return corrected or text

    async def anormalize_segments(self, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
        """
        Fill `clean_text` for every segment, in order.

        One segment's failure never affects another.
        """
        logger.info(f"Normalizing {len(segments)} segments")
        normalized = []
        for seg in segments:
            clean_text = await self.anormalize_text(seg.raw_text)
            normalized.append(seg.model_copy(update={"clean_text": clean_text}))
        return normalized


class PassthroughNormalizer:
    """Normalizer used when correction is disabled: clean_text = raw_text."""

    async def anormalize_text(self, text: str) -> str:
        return text

    async def anormalize_segments(self, segments: List[TranscriptSegment]) -> List[TranscriptSegment]:
        return [seg.model_copy(update={"clean_text": seg.raw_text}) for seg in segments]


def create_text_normalizer(
    chat_service: ChatServiceProtocol,
    settings: Optional[Settings] = None,
):
    """Return a TextNormalizer, or a passthrough when normalization is disabled."""
    settings = settings or get_settings()
    if not settings.enable_text_normalization:
        logger.info("Text normalization disabled")
        return PassthroughNormalizer()
    return TextNormalizer(chat_service=chat_service, settings=settings)
