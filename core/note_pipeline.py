"""
Clinical Note Pipeline
======================

Fixed three-agent graph:

    transcript -> [Scribe] -> note -+-> [Coder]   -> codes --+
                                    |                        +-> ClinicalNoteResult
                                    +-> [Advisor] -> advice -+

Scribe runs first; Coder and Advisor both depend only on its note, so they
run as two concurrent tasks joined by a barrier. The result is available
once both finish.

Failure handling follows the agents' own policies: Scribe and Coder
degrade to sentinels (listed in `ClinicalNoteResult.errors`), while an
Advisor exception cancels the sibling task and is re-raised as
AnalysisFailedError. Cancelling the caller cancels both child tasks.
"""

import asyncio
import logging
import time

from core.clinical_agents import (
    AdvisorAgent,
    CoderAgent,
    ScribeAgent,
    coder_failed,
    scribe_failed,
)
from exceptions import AnalysisFailedError, NoteValidationError
from models import ClinicalNoteResult

logger = logging.getLogger(__name__)


class ClinicalNotePipeline:
    """
    Orchestrates Scribe -> {Coder, Advisor}.

    Args:
        scribe: Structured note agent
        coder: ICD-10 agent
        advisor: Retrieval-augmented advice agent
    """

    def __init__(self, scribe: ScribeAgent, coder: CoderAgent, advisor: AdvisorAgent):
        self.scribe = scribe
        self.coder = coder
        self.advisor = advisor

    async def arun(self, transcript: str) -> ClinicalNoteResult:
        """
        Run the whole graph for one transcript.

        Raises:
            NoteValidationError: If the transcript is blank
            AnalysisFailedError: If the Advisor (or any stage that does not
                degrade on its own) fails
        """
        if not transcript or not transcript.strip():
            raise NoteValidationError("Transcript is empty", missing_fields=["transcript"])

        start_time = time.perf_counter()
        logger.info(f"Clinical note pipeline started ({len(transcript)} chars)")

        soap = await self.scribe.agenerate(transcript)

        coder_task = asyncio.create_task(self.coder.acode(soap), name="coder")
        advisor_task = asyncio.create_task(self.advisor.aadvise(soap), name="advisor")
        tasks = (coder_task, advisor_task)

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            logger.info("Clinical note pipeline cancelled, stopping coder and advisor")
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        for task in done:
            if task.cancelled():
                continue
            exc = task.exception()
            if exc is None:
                continue
            for other in pending:
                other.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            logger.error(f"Clinical note pipeline failed at {task.get_name()}: {exc}")
            raise AnalysisFailedError(stage=task.get_name(), reason=str(exc)) from exc

        icd_codes = coder_task.result()
        advisory = advisor_task.result()

        errors = []
        if scribe_failed(soap):
            errors.append("scribe")
        if coder_failed(icd_codes):
            errors.append("coder")

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"Clinical note pipeline finished in {elapsed:.1f}s "
            f"({len(icd_codes)} codes, {len(advisory.references)} references, degraded: {errors or 'none'})"
        )

        return ClinicalNoteResult(
            soap=soap,
            icd_codes=icd_codes,
            medical_advice=advisory.narrative,
            references=advisory.references,
            errors=errors,
            processing_time_seconds=round(elapsed, 3),
        )


def create_note_pipeline(chat_service, retriever, settings=None) -> ClinicalNotePipeline:
    """Wire the three agents around one chat service and one retriever."""
    return ClinicalNotePipeline(
        scribe=ScribeAgent(chat_service, settings),
        coder=CoderAgent(chat_service, settings),
        advisor=AdvisorAgent(chat_service, retriever, settings),
    )
