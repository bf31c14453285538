import asyncio
import json
import re

import pytest

from core.clinical_agents import (
    CODER_ERROR_SENTINEL,
    SCRIBE_ERROR_MARKER,
    AdvisorAgent,
    CoderAgent,
    ScribeAgent,
)
from core.knowledge_retriever import KnowledgeRetriever
from core.llm import MockChatService, default_mock_rules
from core.note_pipeline import ClinicalNotePipeline, create_note_pipeline
from exceptions import AnalysisFailedError, NoteValidationError
from models import AdvisoryResult, StructuredNote
from prompts import NO_CONTEXT_PLACEHOLDER


SCENARIO_TRANSCRIPT = "Bệnh nhân đau bụng 3 ngày, bác sĩ chẩn đoán viêm dạ dày"
ICD_PATTERN = re.compile(r"[A-Z]\d{2}(\.\d)?")


class FailingRetriever:
    async def aretrieve(self, query, k=None):
        raise RuntimeError("vector store unavailable")


class SlowAgent:
    """Stands in for Coder or Advisor and records cancellation."""

    def __init__(self, result=None, delay=10.0):
        self.result = result
        self.delay = delay
        self.cancelled = False

    async def _wait(self):
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return self.result

    async def acode(self, note):
        return await self._wait()

    async def aadvise(self, note):
        return await self._wait()


class RaisingAdvisor:
    async def aadvise(self, note):
        raise RuntimeError("expert model crashed")


@pytest.fixture
def retriever(settings, knowledge_dir, embeddings):
    return KnowledgeRetriever(embeddings, settings, knowledge_base_dir=str(knowledge_dir))


async def test_end_to_end_note_codes_and_advice(mock_chat, retriever, settings):
    pipeline = create_note_pipeline(mock_chat, retriever, settings)

    result = await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert result.soap.subjective
    assert result.soap.assessment
    assert result.icd_codes
    assert all(ICD_PATTERN.match(code) for code in result.icd_codes)
    assert result.medical_advice
    assert "viem_da_day" in result.references
    assert len(result.references) == len(set(result.references))
    assert result.errors == []


async def test_empty_knowledge_base_still_produces_advice(mock_chat, settings, tmp_path, embeddings):
    empty = tmp_path / "empty"
    empty.mkdir()
    retriever = KnowledgeRetriever(embeddings, settings, knowledge_base_dir=str(empty))
    pipeline = create_note_pipeline(mock_chat, retriever, settings)

    result = await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert result.medical_advice
    assert result.references == []
    assert "advisor" not in result.errors
    advisor_calls = [c for c in mock_chat.calls if "chuyên gia y tế cố vấn" in c["prompt"]]
    assert NO_CONTEXT_PLACEHOLDER in advisor_calls[0]["prompt"]


async def test_advisor_uses_expert_model(mock_chat, retriever, settings):
    pipeline = create_note_pipeline(mock_chat, retriever, settings)

    await pipeline.arun(SCENARIO_TRANSCRIPT)

    advisor_calls = [c for c in mock_chat.calls if "chuyên gia y tế cố vấn" in c["prompt"]]
    assert len(advisor_calls) == 1
    assert advisor_calls[0]["model"] == settings.ollama_expert_model


async def test_advisor_failure_fails_whole_invocation(mock_chat, settings):
    pipeline = create_note_pipeline(mock_chat, FailingRetriever(), settings)

    with pytest.raises(AnalysisFailedError) as exc_info:
        await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert exc_info.value.details["stage"] == "advisor"
    assert exc_info.value.details["retryable"] is True


async def test_scribe_failure_returns_sentinel(retriever, settings):
    rules = default_mock_rules()
    rules["thư ký y khoa"] = RuntimeError("scribe model timeout")
    pipeline = create_note_pipeline(MockChatService(rules=rules), retriever, settings)

    result = await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert result.soap.plan == SCRIBE_ERROR_MARKER
    assert not result.soap.assessment
    assert result.errors == ["scribe"]


async def test_malformed_scribe_reply_returns_sentinel(settings):
    scribe = ScribeAgent(MockChatService(default="Xin lỗi, tôi không thể trả lời."), settings)

    note = await scribe.agenerate(SCENARIO_TRANSCRIPT)

    assert note == StructuredNote(plan=SCRIBE_ERROR_MARKER)


async def test_scribe_missing_keys_become_empty(settings):
    reply = json.dumps({"subjective": "Đau bụng", "assessment": None})
    scribe = ScribeAgent(MockChatService(default=reply), settings)

    note = await scribe.agenerate(SCENARIO_TRANSCRIPT)

    assert note.subjective == "Đau bụng"
    assert note.objective == ""
    assert note.assessment == ""


async def test_coder_failure_returns_sentinel(retriever, settings):
    rules = default_mock_rules()
    rules["mã hóa bệnh lý ICD-10"] = "không có mã"
    pipeline = create_note_pipeline(MockChatService(rules=rules), retriever, settings)

    result = await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert result.icd_codes == [CODER_ERROR_SENTINEL]
    assert result.errors == ["coder"]
    assert result.medical_advice


@pytest.mark.parametrize("reply, expected", [
    ('{"codes": ["K29.7 - Viêm dạ dày"]}', ["K29.7 - Viêm dạ dày"]),
    ('{"icd_codes": ["I10"]}', ["I10"]),
    ('["R10.1", " "]', ["R10.1"]),
    ('```json\n{"codes": []}\n```', []),
])
def test_parse_codes_shapes(reply, expected):
    assert CoderAgent.parse_codes(reply) == expected


async def test_blank_transcript_is_rejected(mock_chat, retriever, settings):
    pipeline = create_note_pipeline(mock_chat, retriever, settings)

    with pytest.raises(NoteValidationError):
        await pipeline.arun("   ")

    assert mock_chat.call_count == 0


async def test_advisor_failure_cancels_coder(mock_chat, settings):
    coder = SlowAgent(result=["K29.7"])
    pipeline = ClinicalNotePipeline(ScribeAgent(mock_chat, settings), coder, RaisingAdvisor())

    with pytest.raises(AnalysisFailedError):
        await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert coder.cancelled


async def test_caller_cancellation_stops_both_agents(mock_chat, settings):
    coder = SlowAgent(result=["K29.7"])
    advisor = SlowAgent(result=AdvisoryResult(narrative="..."))
    pipeline = ClinicalNotePipeline(ScribeAgent(mock_chat, settings), coder, advisor)

    task = asyncio.create_task(pipeline.arun(SCENARIO_TRANSCRIPT))
    await asyncio.sleep(0.05)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert coder.cancelled
    assert advisor.cancelled


async def test_coder_and_advisor_run_concurrently(mock_chat, settings):
    coder = SlowAgent(result=["K29.7"], delay=0.2)
    advisor = SlowAgent(result=AdvisoryResult(narrative="Tư vấn"), delay=0.2)
    pipeline = ClinicalNotePipeline(ScribeAgent(mock_chat, settings), coder, advisor)

    loop = asyncio.get_running_loop()
    started = loop.time()
    result = await pipeline.arun(SCENARIO_TRANSCRIPT)

    assert loop.time() - started < 0.35
    assert result.icd_codes == ["K29.7"]
    assert result.medical_advice == "Tư vấn"
