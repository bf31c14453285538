import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app, app_state
from api.routes import health
from api.services.session_manager import FINAL_RECORD_REQUIRED_MESSAGE, SessionManager
from core.llm import MockChatService
from core.note_pipeline import create_note_pipeline
from core.pipeline import create_pipeline
from transcriber import RemoteWhisperTranscriber


TRANSCRIPT = "Bệnh nhân: Tôi đau bụng vùng thượng vị 3 ngày.\nBác sĩ: Có sốt không?"


@pytest.fixture
def pipeline(settings):
    return create_pipeline(settings, use_mock=True)


@pytest.fixture
def client(settings, pipeline):
    # Lifespan is not entered; services are injected directly
    app_state["pipeline"] = pipeline
    app_state["session_manager"] = SessionManager(settings)
    app_state["settings"] = settings
    yield TestClient(app)
    app_state.clear()


def _final_record():
    return {
        "soap": {
            "subjective": "Đau thượng vị 3 ngày",
            "objective": "Ấn đau thượng vị",
            "assessment": "Viêm dạ dày",
            "plan": "Thuốc ức chế bơm proton, tái khám sau 2 tuần.",
        },
        "icd_codes": ["K29.7 - Viêm dạ dày"],
        "status": "final",
    }


def test_transcribe_returns_labelled_transcript(client):
    response = client.post(
        "/api/v1/transcribe",
        files={"file": ("visit.wav", b"RIFF-fake", "audio/wav")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["num_segments"] == 3
    assert body["transcript"].startswith("Bệnh nhân: Chào bác sĩ")
    assert "đau thượng vị" in body["segments"][0]["clean_text"]


def test_unsupported_audio_maps_to_415(client, settings, pipeline):
    pipeline.transcriber = RemoteWhisperTranscriber(
        settings, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    )

    response = client.post(
        "/api/v1/transcribe",
        files={"file": ("notes.txt", b"hello", "text/plain")},
    )

    assert response.status_code == 415
    assert response.json()["error_type"] == "UnsupportedAudioFormatError"


def test_speech_api_failure_maps_to_502(client, settings, pipeline):
    pipeline.transcriber = RemoteWhisperTranscriber(
        settings, transport=httpx.MockTransport(lambda request: httpx.Response(500))
    )

    response = client.post(
        "/api/v1/transcribe",
        files={"file": ("visit.wav", b"RIFF-fake", "audio/wav")},
    )

    assert response.status_code == 502
    assert response.json()["details"]["status_code"] == 500


def test_analyze_returns_note_codes_and_advice(client):
    response = client.post("/api/v1/analyze", json={"transcript": TRANSCRIPT})

    assert response.status_code == 200
    body = response.json()
    assert body["soap"]["assessment"]
    assert body["icd_codes"][0].startswith("K29.7")
    assert body["medical_advice"]
    assert body["errors"] == []


def test_analyze_rejects_empty_transcript(client):
    response = client.post("/api/v1/analyze", json={"transcript": ""})
    assert response.status_code == 422


def test_advisor_failure_maps_to_503(client, settings, pipeline):
    failing = MockChatService(rules={"chuyên gia y tế cố vấn": RuntimeError("expert model down")})
    pipeline.note_pipeline = create_note_pipeline(failing, pipeline.retriever, settings)

    response = client.post("/api/v1/analyze", json={"transcript": TRANSCRIPT})

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"
    assert response.json()["details"]["stage"] == "advisor"


def test_compare_is_stateless(client):
    response = client.post("/api/v1/compare", json={
        "ai_note": {"assessment": "Viêm dạ dày"},
        "ai_codes": ["K29.7"],
        "doctor_note": {"assessment": "Viêm dạ dày"},
        "doctor_codes": ["I10"],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["per_field_score"]["assessment"] == 100
    assert body["code_overlap"]["score"] == 0


def test_session_workflow(client):
    session = client.post("/api/v1/sessions", json={"patient_id": "BN-001", "transcript": TRANSCRIPT})
    assert session.status_code == 201
    session_id = session.json()["id"]

    analysis = client.post(f"/api/v1/sessions/{session_id}/analysis", json={})
    assert analysis.status_code == 200
    assert client.get(f"/api/v1/sessions/{session_id}").json()["ai_result"]["icd_codes"]

    assert client.get(f"/api/v1/sessions/{session_id}/comparison").json() is None

    record = client.put(f"/api/v1/sessions/{session_id}/record", json=_final_record())
    assert record.status_code == 200
    assert client.get(f"/api/v1/sessions/{session_id}").json()["status"] == "completed"

    first = client.post(f"/api/v1/sessions/{session_id}/comparisons", json={})
    second = client.post(f"/api/v1/sessions/{session_id}/comparisons", json={"doctor_codes": ["I10"]})
    assert first.status_code == second.status_code == 201
    assert first.json()["medical_record_id"] == record.json()["id"]
    assert first.json()["comparison"]["per_field_score"]["assessment"] == 100

    latest = client.get(f"/api/v1/sessions/{session_id}/comparison").json()
    assert latest["id"] == second.json()["id"]
    assert latest["doctor_results"]["icd_codes"] == ["I10"]


def test_final_record_without_codes_maps_to_400(client):
    session_id = client.post("/api/v1/sessions", json={}).json()["id"]
    payload = _final_record()
    payload["icd_codes"] = []

    response = client.put(f"/api/v1/sessions/{session_id}/record", json=payload)

    assert response.status_code == 400
    assert response.json()["message"] == FINAL_RECORD_REQUIRED_MESSAGE
    assert response.json()["details"]["missing_fields"] == ["icd_codes"]


def test_comparison_without_ai_result_maps_to_400(client):
    session_id = client.post("/api/v1/sessions", json={}).json()["id"]

    response = client.post(f"/api/v1/sessions/{session_id}/comparisons", json={})

    assert response.status_code == 400
    assert set(response.json()["details"]["missing_fields"]) == {"ai_note", "doctor_note"}


def test_unknown_session_maps_to_404(client):
    response = client.get("/api/v1/sessions/does-not-exist")
    assert response.status_code == 404
    assert response.json()["error_type"] == "SessionNotFoundError"


def test_liveness(client):
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200
    assert response.json()["status"] == "alive"


def test_health_reports_each_service(client, monkeypatch):
    async def fake_ollama(settings, transport=None):
        return health.ServiceCheckResult(status=health.ServiceStatus.HEALTHY, message="ok")

    monkeypatch.setattr(health, "check_ollama", fake_ollama)

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    body = response.json()
    assert set(body["services"]) == {"api", "redis", "ollama", "knowledge_base"}
    assert body["services"]["redis"]["status"] == "degraded"
    assert body["status"] == "degraded"


async def test_ollama_check_requires_both_models(settings):
    def handler(request):
        return httpx.Response(200, json={"models": [{"name": settings.ollama_model}]})

    settings = settings.model_copy(update={"ollama_expert_model": "llama3:70b"})
    result = await health.check_ollama(settings, transport=httpx.MockTransport(handler))

    assert result.status == health.ServiceStatus.UNHEALTHY
    assert "llama3:70b" in result.message


async def test_ollama_check_healthy(settings):
    def handler(request):
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": [
            {"name": settings.ollama_model},
            {"name": settings.ollama_expert_model},
        ]})

    result = await health.check_ollama(settings, transport=httpx.MockTransport(handler))

    assert result.status == health.ServiceStatus.HEALTHY


def test_health_samples_metrics_off_the_event_loop(client, monkeypatch):
    async def fake_ollama(settings, transport=None):
        return health.ServiceCheckResult(status=health.ServiceStatus.HEALTHY, message="ok")

    loops_seen = []

    def fake_cpu_percent(interval=None):
        try:
            loops_seen.append(asyncio.get_running_loop())
        except RuntimeError:
            loops_seen.append(None)
        return 12.5

    monkeypatch.setattr(health, "check_ollama", fake_ollama)
    monkeypatch.setattr(health.psutil, "cpu_percent", fake_cpu_percent)

    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json()["system_metrics"]["cpu_percent"] == 12.5
    assert loops_seen == [None]
