from core.llm import MockChatService, default_mock_rules
from core.text_normalizer import PassthroughNormalizer, TextNormalizer, create_text_normalizer
from config import get_settings_for_testing
from models import TranscriptSegment


def _segments(*texts):
    return [TranscriptSegment(start=float(i), end=float(i) + 0.9, raw_text=t) for i, t in enumerate(texts)]


async def test_corrects_known_mistranscriptions(settings):
    normalizer = TextNormalizer(MockChatService(rules=default_mock_rules()), settings)

    corrected = await normalizer.anormalize_text("Tôi bị đau thượng vịt và bị sụp")

    assert corrected == "Tôi bị đau thượng vị và bị sốt"


async def test_segments_are_processed_in_order(settings):
    chat = MockChatService(default=lambda prompt, system: prompt.upper())
    normalizer = TextNormalizer(chat, settings)

    result = await normalizer.anormalize_segments(_segments("một", "hai", "ba"))

    assert [call["prompt"] for call in chat.calls] == ["một", "hai", "ba"]
    assert [seg.clean_text for seg in result] == ["MỘT", "HAI", "BA"]
    assert [seg.raw_text for seg in result] == ["một", "hai", "ba"]


async def test_one_failure_does_not_affect_other_segments(settings):
    def reply(prompt, system):
        if "hỏng" in prompt:
            raise RuntimeError("rate limited")
        return prompt + "."

    normalizer = TextNormalizer(MockChatService(default=reply), settings)

    result = await normalizer.anormalize_segments(_segments("đầu", "hỏng", "cuối"))

    assert [seg.clean_text for seg in result] == ["đầu.", "hỏng", "cuối."]


async def test_empty_reply_keeps_original(settings):
    normalizer = TextNormalizer(MockChatService(default="   "), settings)

    assert await normalizer.anormalize_text("đau đầu") == "đau đầu"


async def test_blank_text_makes_no_call(settings):
    chat = MockChatService(default="x")
    normalizer = TextNormalizer(chat, settings)

    assert await normalizer.anormalize_text("  ") == "  "
    assert chat.call_count == 0


async def test_disabled_normalization_copies_raw_text():
    settings = get_settings_for_testing(enable_text_normalization=False)
    normalizer = create_text_normalizer(MockChatService(), settings)

    result = await normalizer.anormalize_segments(_segments("đau thượng vịt"))

    assert isinstance(normalizer, PassthroughNormalizer)
    assert result[0].clean_text == "đau thượng vịt"
