import os
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]

# Keep tests hermetic regardless of local shell/.env values.
os.environ.pop("EXAMSCRIBE_REDIS_URL", None)
os.environ["EXAMSCRIBE_NORMALIZER_DELAY_SECONDS"] = "0"
os.environ["EXAMSCRIBE_KNOWLEDGE_BASE_DIR"] = str(REPO_ROOT / "data" / "knowledge_base" / "protocols")
os.environ["EXAMSCRIBE_TRANSCRIPTION_API_KEY"] = "test-key"
os.environ["EXAMSCRIBE_ANALYSIS_RATE_LIMIT"] = "1000/minute"


@pytest.fixture(autouse=True)
def _fresh_settings():
    from config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    from config import get_settings_for_testing

    return get_settings_for_testing(normalizer_delay_seconds=0)


@pytest.fixture
def mock_chat():
    from core.llm import MockChatService, default_mock_rules

    return MockChatService(rules=default_mock_rules())


@pytest.fixture
def embeddings():
    from core.llm import MockEmbeddings

    return MockEmbeddings()


@pytest.fixture
def knowledge_dir(tmp_path):
    directory = tmp_path / "protocols"
    directory.mkdir()
    (directory / "viem_da_day.md").write_text(
        "# Viêm dạ dày\n\nĐau thượng vị, buồn nôn. Điều trị bằng thuốc ức chế bơm proton.\n",
        encoding="utf-8",
    )
    (directory / "tang_huyet_ap.md").write_text(
        "# Tăng huyết áp\n\nHuyết áp trên 140/90 mmHg. Giảm muối, dùng thuốc hạ áp.\n",
        encoding="utf-8",
    )
    return directory
