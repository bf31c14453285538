"""
Comparison Engine
=================

Scores an AI-produced note and code set against the clinician's own.

Scoring:
1. Per SOAP section: cosine similarity of the two texts' embeddings,
   mapped to 0-100. Either side empty scores 0 (checked first, nothing is
   embedded); identical text scores 100.
2. Codes: each entry is reduced to its leading token ("K29.7 - Viêm dạ dày"
   -> "K29.7"), then Jaccard similarity x 100. Both sides empty scores 100.
3. Match score:
       0.3 * assessment + 0.3 * plan + 0.3 * codes
     + 0.1 * mean(subjective, objective)
4. Difference notes are rule-based, never generated: assessment or plan
   below DISCREPANCY_THRESHOLD, plus the codes only one side has.

Internal arithmetic is unrounded; every returned score is rounded half-up
to an integer value.
"""

import asyncio
import logging
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np
from langchain_core.embeddings import Embeddings

from models import SOAP_FIELDS, CodeOverlap, ComparisonResult, StructuredNote

logger = logging.getLogger(__name__)


SCORE_WEIGHTS = {
    "assessment": 0.3,
    "plan": 0.3,
    "codes": 0.3,
    "history": 0.1,  # mean of subjective and objective
}

DISCREPANCY_THRESHOLD = 80


def round_score(value: float) -> float:
    """Round half-up to the nearest integer (0.5 -> 1, 84.5 -> 85)."""
    return float(math.floor(value + 0.5))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude.
    """
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


def normalize_code(code: str) -> str:
    """Reduce "K29.7 - Gastritis" or "k29.7 Gastritis" to "K29.7"."""
    head = str(code).split("-")[0].strip()
    return head.split(" ")[0].strip().upper() if head else ""


def normalize_codes(codes: Iterable[str]) -> List[str]:
    """Normalize codes, dropping blanks and duplicates, keeping first-seen order."""
    seen: List[str] = []
    for code in codes:
        normalized = normalize_code(code)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def jaccard_score(a: set, b: set) -> float:
    """Jaccard similarity x 100; two empty sets agree fully (100)."""
    union = a | b
    if not union:
        return 100.0
    return len(a & b) / len(union) * 100


def compare_codes(ai_codes: Iterable[str], doctor_codes: Iterable[str]) -> CodeOverlap:
    """
    Jaccard agreement between two code lists after normalization.

    Output lists keep the order codes first appear in their input.
    """
    ai = normalize_codes(ai_codes)
    doctor = normalize_codes(doctor_codes)
    ai_set, doctor_set = set(ai), set(doctor)

    return CodeOverlap(
        exact_matches=[code for code in ai if code in doctor_set],
        ai_only_codes=[code for code in ai if code not in doctor_set],
        doctor_only_codes=[code for code in doctor if code not in ai_set],
        score=round_score(jaccard_score(ai_set, doctor_set)),
    )


class ComparisonEngine:
    """
    Semantic diff between AI and clinician documentation.

    Usage:
        engine = ComparisonEngine(embeddings)
        result = await engine.acompare(ai_note, doctor_note, ai_codes, doctor_codes)
    """

    def __init__(self, embeddings: Embeddings):
        self.embeddings = embeddings

    async def atext_similarity(self, text_a: Optional[str], text_b: Optional[str]) -> float:
        """
        Similarity of two texts on a 0-100 scale (unrounded).

        Embedding failures are logged and score 0 so one bad call cannot
        abort the whole comparison.
        """
        a = (text_a or "").strip()
        b = (text_b or "").strip()
        if not a or not b:
            return 0.0
        if a == b:
            return 100.0

        try:
            vectors = await self.embeddings.aembed_documents([a, b])
        except Exception as e:
            logger.warning(f"Embedding failed during comparison, scoring field as 0: {e}")
            return 0.0

        similarity = cosine_similarity(vectors[0], vectors[1])
        return max(0.0, min(100.0, similarity * 100))

    async def acompare(
        self,
        ai_note: StructuredNote,
        doctor_note: StructuredNote,
        ai_codes: Iterable[str],
        doctor_codes: Iterable[str],
    ) -> ComparisonResult:
        """
        Compare an AI result with a clinician result.

        Returns:
            A frozen ComparisonResult
        """
        raw_scores = await asyncio.gather(*(
            self.atext_similarity(getattr(ai_note, name), getattr(doctor_note, name))
            for name in SOAP_FIELDS
        ))
        field_scores = dict(zip(SOAP_FIELDS, raw_scores))

        ai_codes = list(ai_codes)
        doctor_codes = list(doctor_codes)
        code_overlap = compare_codes(ai_codes, doctor_codes)
        code_score = jaccard_score(set(normalize_codes(ai_codes)), set(normalize_codes(doctor_codes)))

        history = (field_scores["subjective"] + field_scores["objective"]) / 2
        match_score = (
            field_scores["assessment"] * SCORE_WEIGHTS["assessment"]
            + field_scores["plan"] * SCORE_WEIGHTS["plan"]
            + code_score * SCORE_WEIGHTS["codes"]
            + history * SCORE_WEIGHTS["history"]
        )

        notes = []
        if field_scores["assessment"] < DISCREPANCY_THRESHOLD:
            notes.append("Discrepancy in Assessment")
        if field_scores["plan"] < DISCREPANCY_THRESHOLD:
            notes.append("Discrepancy in Treatment Plan")
        if code_overlap.ai_only_codes:
            notes.append(f"AI suggested extra codes: {', '.join(code_overlap.ai_only_codes)}")
        if code_overlap.doctor_only_codes:
            notes.append(f"Doctor added codes: {', '.join(code_overlap.doctor_only_codes)}")

        result = ComparisonResult(
            match_score=min(100.0, max(0.0, round_score(match_score))),
            per_field_score={name: round_score(score) for name, score in field_scores.items()},
            code_overlap=code_overlap,
            difference_notes=notes,
        )
        logger.info(
            f"Comparison complete: match score {result.match_score:.0f}, "
            f"fields {result.per_field_score}, codes {code_overlap.score:.0f}"
        )
        return result
