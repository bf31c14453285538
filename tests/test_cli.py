import json

import pytest

import cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging_for_cli", lambda verbose, quiet: None)


def test_analyze_text_json(capsys):
    code = cli.main(["--mock", "--json", "analyze", "--text", "Bệnh nhân: Tôi đau bụng 3 ngày."])

    assert code == 0
    body = json.loads(capsys.readouterr().out)
    assert body["soap"]["assessment"] == "Viêm dạ dày"
    assert body["icd_codes"]


def test_transcribe_audio_file(tmp_path, capsys):
    audio = tmp_path / "visit.wav"
    audio.write_bytes(b"RIFF-fake")

    code = cli.main(["--mock", "--quiet", "transcribe", str(audio)])

    assert code == 0
    assert "Bác sĩ: Bạn có sốt không?" in capsys.readouterr().out


def test_compare_files(tmp_path, capsys):
    ai = tmp_path / "ai.json"
    doctor = tmp_path / "doctor.json"
    ai.write_text(json.dumps({"soap": {"assessment": "Viêm dạ dày"}, "icd_codes": ["K29.7"]}), encoding="utf-8")
    doctor.write_text(json.dumps({"soap": {"assessment": "Viêm dạ dày"}, "icd_codes": ["K29.7 - Gastritis"]}), encoding="utf-8")

    code = cli.main(["--mock", "--json", "compare", "--ai", str(ai), "--doctor", str(doctor)])

    assert code == 0
    body = json.loads(capsys.readouterr().out)
    assert body["code_overlap"]["score"] == 100
    assert body["per_field_score"]["assessment"] == 100


def test_missing_input_file_exits_1(tmp_path):
    missing = str(tmp_path / "missing.json")
    assert cli.main(["--mock", "compare", "--ai", missing, "--doctor", missing]) == 1


def test_analyze_requires_exactly_one_source():
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--mock", "analyze"])
    assert exc_info.value.code == 2
