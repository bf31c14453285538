import pytest

from core.comparison import (
    ComparisonEngine,
    compare_codes,
    cosine_similarity,
    normalize_code,
    round_score,
)
from core.llm import MockEmbeddings
from models import StructuredNote


class FailingEmbeddings(MockEmbeddings):
    async def aembed_documents(self, texts):
        raise RuntimeError("embedding server down")


def _note(**fields):
    return StructuredNote(**fields)


FULL_NOTE = _note(
    subjective="Đau thượng vị 3 ngày",
    objective="Ấn đau vùng thượng vị",
    assessment="Viêm dạ dày",
    plan="Omeprazole 20mg, tái khám sau 2 tuần",
)


@pytest.fixture
def engine():
    return ComparisonEngine(MockEmbeddings())


async def test_identical_assessment_scores_100(engine):
    result = await engine.acompare(
        _note(assessment="Viêm dạ dày"), _note(assessment="Viêm dạ dày"), [], []
    )
    assert result.per_field_score["assessment"] == 100


def test_code_suffix_is_ignored():
    overlap = compare_codes(["K29.7"], ["K29.7 - Gastritis"])
    assert overlap.exact_matches == ["K29.7"]
    assert overlap.ai_only_codes == []
    assert overlap.doctor_only_codes == []
    assert overlap.score == 100


def test_disjoint_codes_score_zero():
    overlap = compare_codes(["K29.7"], ["I10"])
    assert overlap.score == 0
    assert overlap.ai_only_codes == ["K29.7"]
    assert overlap.doctor_only_codes == ["I10"]


def test_both_code_lists_empty_score_100():
    assert compare_codes([], []).score == 100


def test_partial_overlap_uses_jaccard():
    # |{K29.7}| / |{K29.7, R10.1, I10}| = 1/3
    overlap = compare_codes(["K29.7", "R10.1"], ["k29.7 viêm dạ dày", "I10"])
    assert overlap.exact_matches == ["K29.7"]
    assert overlap.score == 33


@pytest.mark.parametrize("raw, expected", [
    ("K29.7 - Viêm dạ dày", "K29.7"),
    ("k29.7 Viêm dạ dày", "K29.7"),
    ("  I10  ", "I10"),
    ("", ""),
])
def test_normalize_code(raw, expected):
    assert normalize_code(raw) == expected


async def test_empty_side_scores_zero_without_embedding(engine):
    assert await engine.atext_similarity("", "Viêm dạ dày") == 0
    assert await engine.atext_similarity("Viêm dạ dày", "   ") == 0
    assert await engine.atext_similarity("", "") == 0


async def test_identical_notes_and_codes_score_100(engine):
    result = await engine.acompare(FULL_NOTE, FULL_NOTE, ["K29.7"], ["K29.7 - Viêm dạ dày"])
    assert result.match_score == 100
    assert all(score == 100 for score in result.per_field_score.values())
    assert result.difference_notes == []


async def test_empty_notes_score_only_code_agreement(engine):
    result = await engine.acompare(StructuredNote(), StructuredNote(), [], [])
    # Only the code component (weight 0.3) contributes
    assert result.match_score == 30
    assert "Discrepancy in Assessment" in result.difference_notes
    assert "Discrepancy in Treatment Plan" in result.difference_notes


async def test_weighted_match_score(engine):
    doctor = FULL_NOTE.model_copy(update={"plan": ""})
    result = await engine.acompare(FULL_NOTE, doctor, ["K29.7"], ["I10"])
    # assessment 100, plan 0, codes 0, history 100 -> 30 + 0 + 0 + 10
    assert result.match_score == 40
    assert result.difference_notes == [
        "Discrepancy in Treatment Plan",
        "AI suggested extra codes: K29.7",
        "Doctor added codes: I10",
    ]


async def test_scores_are_whole_numbers(engine):
    ai = _note(assessment="Viêm dạ dày cấp", plan="Omeprazole")
    doctor = _note(assessment="Viêm dạ dày mạn tính", plan="Omeprazole và sucralfat")
    result = await engine.acompare(ai, doctor, [], [])
    assert result.match_score == int(result.match_score)
    for score in result.per_field_score.values():
        assert score == int(score)
        assert 0 <= score <= 100


async def test_embedding_failure_scores_field_zero():
    engine = ComparisonEngine(FailingEmbeddings())
    ai = _note(assessment="Viêm dạ dày")
    doctor = _note(assessment="Viêm loét dạ dày")
    result = await engine.acompare(ai, doctor, ["K29.7"], ["K29.7"])
    assert result.per_field_score["assessment"] == 0
    assert result.code_overlap.score == 100


def test_round_half_up():
    assert round_score(84.5) == 85
    assert round_score(0.5) == 1
    assert round_score(2.4999) == 2


def test_cosine_similarity_zero_vector():
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
