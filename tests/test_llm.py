import pytest

from core.llm import (
    MockChatService,
    MockEmbeddings,
    extract_json_array,
    extract_json_object,
    strip_code_fences,
)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("plain") == "plain"


def test_extract_json_object_from_prose():
    assert extract_json_object('Đây là kết quả: {"plan": "PPI"} xong.') == {"plan": "PPI"}


def test_extract_json_object_raises_without_object():
    with pytest.raises(ValueError):
        extract_json_object("không có gì")


def test_extract_json_array_skips_bracketed_prose():
    text = 'Chú thích [xem dưới]: [{"index": 0, "role": "Bác sĩ"}]'
    assert extract_json_array(text) == [{"index": 0, "role": "Bác sĩ"}]


def test_extract_json_array_raises_on_truncation():
    with pytest.raises(ValueError):
        extract_json_array('[{"index": 0')


async def test_mock_chat_matches_first_rule_and_records_calls():
    chat = MockChatService(rules={"scribe": "A", "coder": "B"}, default="Z")

    assert await chat.acomplete("hello", system="you are a coder") == "B"
    assert await chat.acomplete("nothing") == "Z"
    assert chat.call_count == 2
    assert chat.calls[0]["system"] == "you are a coder"


def test_mock_embeddings_are_deterministic_and_normalized():
    embeddings = MockEmbeddings(dimensions=64)
    first, second = embeddings.embed_documents(["đau bụng", "đau bụng"])
    assert first == second
    assert sum(v * v for v in first) == pytest.approx(1.0)
    assert embeddings.embed_query("") == [0.0] * 64
