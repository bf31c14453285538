"""
Clinical Prompts for ExamScribe AI
==================================

Prompt templates for the five LLM-backed agents:

- Speaker Attributor: assigns doctor/patient roles to transcript segments
- Text Normalizer: fixes known speech-to-text mistakes in one segment
- Scribe: turns the consultation transcript into a strict-JSON SOAP note
- Coder: proposes ICD-10 codes from the assessment and symptoms
- Advisor: gives retrieval-grounded advice on the current note

Prompt bodies are written in Vietnamese: consultations are Vietnamese and
models follow same-language instructions more reliably. Each builder
returns a (system_prompt, user_prompt) tuple.
"""

from models import StructuredNote, TranscriptSegment

# =============================================================================
# Language Support
# =============================================================================

# ISO 639-1 language codes to full language names
LANGUAGE_CODE_MAP: dict[str, str] = {
    "vi": "Vietnamese",
    "en": "English",
    "fr": "French",
    "zh": "Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "th": "Thai",
}

# Native names used inside the Vietnamese prompt bodies
NATIVE_LANGUAGE_NAMES: dict[str, str] = {
    "vi": "TIẾNG VIỆT",
    "en": "TIẾNG ANH",
    "fr": "TIẾNG PHÁP",
}


def get_language_name(language_code: str) -> str:
    """
    Convert ISO 639-1 language code to full language name.

    Args:
        language_code: ISO 639-1 two-letter language code (e.g., "vi")

    Returns:
        Full language name, or the code itself if not in the map

    Examples:
        >>> get_language_name("vi")
        'Vietnamese'
        >>> get_language_name("unknown")
        'unknown'
    """
    if not language_code:
        return "Vietnamese"

    code = language_code.lower().strip()
    return LANGUAGE_CODE_MAP.get(code, language_code)


def _native_language(language_code: str) -> str:
    code = (language_code or "vi").lower().strip()
    return NATIVE_LANGUAGE_NAMES.get(code, get_language_name(code).upper())


# =============================================================================
# Speaker Attribution
# =============================================================================

# Role words the model may answer with, mapped to SpeakerRole values
ROLE_SYNONYMS: dict[str, str] = {
    "bác sĩ": "clinician",
    "bac si": "clinician",
    "doctor": "clinician",
    "clinician": "clinician",
    "bệnh nhân": "patient",
    "benh nhan": "patient",
    "patient": "patient",
}

SPEAKER_ATTRIBUTION_PROMPT = """Bạn là chuyên gia phân tích hội thoại y khoa tiếng Việt.
Dưới đây là transcript cuộc khám bệnh. Hãy xác định vai trò người nói cho từng đoạn.

QUY TẮC XÁC ĐỊNH VAI TRÒ:
- BÁC SĨ: Hỏi triệu chứng, hỏi bệnh sử, đưa ra chẩn đoán, kê đơn thuốc, hướng dẫn điều trị
- BỆNH NHÂN: Mô tả triệu chứng ("tôi bị...", "tôi thấy..."), xưng "chào bác sĩ", trả lời câu hỏi về bản thân

MANH MỐI QUAN TRỌNG:
- Ai nói "Chào bác sĩ" → BỆNH NHÂN
- Ai hỏi "bạn/anh/chị có triệu chứng gì?" → BÁC SĨ
- Ai mô tả "tôi đau...", "tôi bị..." → BỆNH NHÂN
- Ai hỏi "có sốt không?", "uống thuốc gì chưa?" → BÁC SĨ

HỘI THOẠI:
{conversation}

Trả về CHÍNH XÁC định dạng JSON array sau, KHÔNG có text khác:
[{{"index": 0, "role": "Bác sĩ"}}, {{"index": 1, "role": "Bệnh nhân"}}, ...]"""


def get_speaker_attribution_prompt(segments: list[TranscriptSegment]) -> tuple[str, str]:
    """
    Build the single-call role attribution prompt.

    Every segment is listed as `[index] "text"` so the model can answer
    with index/role pairs.
    """
    conversation = "\n".join(
        f'[{i}] "{seg.raw_text.strip()}"' for i, seg in enumerate(segments)
    )
    return ("", SPEAKER_ATTRIBUTION_PROMPT.format(conversation=conversation))


# =============================================================================
# Medical Text Normalization
# =============================================================================

# Known speech-to-text confusions in Vietnamese consultations
MEDICAL_TERM_CORRECTIONS: dict[str, str] = {
    "đau thượng vịt": "đau thượng vị",
    "bị sụp": "bị sốt",
    "ăn chích": "ăn kiêng",
    "tiêu chuẩn": "triệu chứng",
}


def get_text_normalizer_prompt(text: str) -> tuple[str, str]:
    """
    Build the constrained rewrite prompt for one segment.

    The system prompt carries the whole contract: fix only the listed
    mis-transcriptions, never add, remove or rephrase.
    """
    corrections = "\n".join(
        f'   - "{wrong}" → "{right}"' for wrong, right in MEDICAL_TERM_CORRECTIONS.items()
    )
    system_prompt = f"""Bạn là chuyên gia hiệu chỉnh văn bản y khoa tiếng Việt.

NHIỆM VỤ: Chỉ sửa lỗi chính tả và phát âm sai trong đoạn văn được chuyển từ giọng nói.

QUY TẮC BẮT BUỘC:
1. TUYỆT ĐỐI KHÔNG thêm nội dung mới
2. TUYỆT ĐỐI KHÔNG xóa bớt nội dung
3. TUYỆT ĐỐI KHÔNG viết lại câu
4. Chỉ sửa lỗi phát âm thường gặp:
{corrections}
5. Giữ nguyên số từ và ý nghĩa gốc
6. Trả về CHÍNH XÁC đoạn văn gốc với lỗi đã sửa, KHÔNG trả lời hay giải thích thêm."""
    return (system_prompt, text)


# =============================================================================
# Scribe Agent
# =============================================================================

SCRIBE_PROMPT = """Bạn là thư ký y khoa chuyên nghiệp.
Nhiệm vụ: Chuyển transcript hội thoại thành bệnh án chuẩn SOAP bằng {language}.

Transcript:
"{transcript}"

Yêu cầu output JSON format:
{{
    "subjective": "Tóm tắt triệu chứng cơ năng, bệnh sử...",
    "objective": "Tóm tắt triệu chứng thực thể, dấu hiệu sinh tồn (nếu có)...",
    "assessment": "Chẩn đoán sơ bộ...",
    "plan": "Kế hoạch điều trị, thuốc, dặn dò..."
}}
Chỉ trả về JSON hợp lệ với đúng 4 khóa trên, không có text khác."""


def get_scribe_prompt(transcript: str, language: str = "vi") -> tuple[str, str]:
    """Build the SOAP extraction prompt (strict JSON, four keys)."""
    return ("", SCRIBE_PROMPT.format(transcript=transcript, language=_native_language(language)))


# =============================================================================
# ICD-10 Coder Agent
# =============================================================================

CODER_PROMPT = """Bạn là chuyên gia về mã hóa bệnh lý ICD-10.
Chẩn đoán: "{assessment}"
Triệu chứng: "{subjective}"

Nhiệm vụ: Tìm mã ICD-10 phù hợp nhất (ưu tiên mã chi tiết).
Trả về kết quả dưới dạng JSON Object với key "codes" là danh sách các mã.
Ví dụ:
{{
    "codes": ["K29.7 - Viêm dạ dày", "R10.1 - Đau vùng thượng vị"]
}}"""


def get_coder_prompt(note: StructuredNote) -> tuple[str, str]:
    """Build the ICD-10 coding prompt from assessment and subjective text."""
    return ("", CODER_PROMPT.format(assessment=note.assessment, subjective=note.subjective))


# =============================================================================
# Advisor Agent (retrieval-augmented)
# =============================================================================

ADVISOR_PROMPT = """Bạn là chuyên gia y tế cố vấn. TẤT CẢ PHẢN HỒI PHẢI BẰNG {language}.
Dựa vào Y VĂN ĐƯỢC CUNG CẤP dưới đây, hãy đưa ra nhận xét và gợi ý điều trị.

Y VĂN (Context):
{context}

BỆNH ÁN (SOAP):
S: {subjective}
O: {objective}
A: {assessment}
P (hiện tại): {plan}

YÊU CẦU (PHẢI TRẢ LỜI BẰNG {language}):
- Đưa ra lời khuyên ngắn gọn cho bác sĩ điều trị.
- Cảnh báo nếu phác đồ hiện tại (Plan) có gì sai sót hoặc không phù hợp so với Y VĂN.
- Gợi ý xét nghiệm/chẩn đoán hình ảnh cần làm thêm (nếu cần).
- Gợi ý điều trị và quản lý bệnh nhân.
- Khi nào cần can thiệp chuyên khoa.
- TRÍCH DẪN từ y văn (nếu có).

LƯU Ý QUAN TRỌNG:
- Chỉ dùng {language}, kể cả khi y văn viết bằng ngôn ngữ khác.
- Tất cả tiêu đề, nội dung phải hoàn toàn bằng {language}."""

# Placed in the context slot when retrieval found nothing
NO_CONTEXT_PLACEHOLDER = "(Không có y văn liên quan. Hãy tư vấn dựa trên kiến thức y khoa chung và không trích dẫn.)"

CONTEXT_SEPARATOR = "\n---\n"


def get_advisor_prompt(
    note: StructuredNote,
    context_chunks: list[str],
    language: str = "vi"
) -> tuple[str, str]:
    """
    Build the advisor prompt.

    Args:
        note: The Scribe's note
        context_chunks: Retrieved protocol excerpts, best first (may be empty)
        language: Note language code; the whole answer must use it

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    context = CONTEXT_SEPARATOR.join(context_chunks) if context_chunks else NO_CONTEXT_PLACEHOLDER
    user_prompt = ADVISOR_PROMPT.format(
        language=_native_language(language),
        context=context,
        subjective=note.subjective,
        objective=note.objective,
        assessment=note.assessment,
        plan=note.plan,
    )
    return ("", user_prompt)
