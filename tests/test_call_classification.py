"""Tests for call category parsing, rating maps and AI classification."""

import pytest

from opshub.db.enums import CallCategory
from opshub.services import call_classification
from opshub.services.ai_provider import strip_code_fences


@pytest.mark.parametrize(
    "value,expected",
    [
        ("warm", CallCategory.WARM),
        ("Very Good", CallCategory.VERY_GOOD),
        ("very-hot", CallCategory.VERY_GOOD),
        ("Negative", CallCategory.NOT_A_FIT),
        ("banana", CallCategory.UNREVIEWED),
        ("", CallCategory.UNREVIEWED),
        (None, CallCategory.UNREVIEWED),
        (CallCategory.SPAM, CallCategory.SPAM),
    ],
)
def test_canonicalize_category(value, expected):
    assert call_classification.canonicalize_category(value) == expected


def test_parse_classification_strict_json():
    result = call_classification.parse_classification(
        '{"category":"warm","summary":"Asked for a quote on a new roof."}'
    )
    assert result.category == CallCategory.WARM
    assert result.summary == "Asked for a quote on a new roof."


def test_parse_classification_regex_fallback():
    raw = 'Here you go: {"category": "spam", "summary": "Robocall about car warranty"'
    result = call_classification.parse_classification(raw)
    assert result.category == CallCategory.SPAM
    assert result.summary == "Robocall about car warranty"


def test_parse_classification_phrase_inference():
    result = call_classification.parse_classification("The caller is ready to book an inspection.")
    assert result.category == CallCategory.VERY_GOOD


def test_parse_classification_unknown_is_unreviewed():
    result = call_classification.parse_classification('{"category":"mystery","summary":"Unclear."}')
    assert result.category == CallCategory.UNREVIEWED


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"category":"warm"}\n```') == '{"category":"warm"}'


def test_rating_to_category_and_auto_star():
    assert call_classification.rating_to_category(5) == CallCategory.CONVERTED
    assert call_classification.rating_to_category(1) == CallCategory.SPAM
    assert call_classification.rating_to_category(0) is None

    assert call_classification.auto_star_rating(CallCategory.SPAM) == 1
    assert call_classification.auto_star_rating(CallCategory.NOT_A_FIT) == 2
    assert call_classification.auto_star_rating(CallCategory.WARM) == 3
    assert call_classification.auto_star_rating(CallCategory.NEEDS_ATTENTION) == 3
    assert call_classification.auto_star_rating(CallCategory.NEUTRAL) == 0
    assert all(call_classification.auto_star_rating(c) < 4 for c in CallCategory)


def test_build_system_prompt_uses_business_prompt_or_default():
    prompt = call_classification.build_system_prompt("We repair roofs in Austin.")
    assert prompt.startswith("We repair roofs in Austin.")
    assert "not_a_fit" in prompt
    assert call_classification.build_system_prompt(None).startswith("You are an assistant")


@pytest.mark.asyncio
async def test_classify_content_prefers_transcript(fake_ai):
    fake_ai.categories = {"leaking": "warm"}
    result = await call_classification.classify_content(
        None, "My roof is leaking, can you come out?", "form text", provider=fake_ai
    )
    assert result.category == CallCategory.WARM
    assert fake_ai.prompts[0].startswith("Caller transcript:")


@pytest.mark.asyncio
async def test_classify_content_without_content_skips_provider(fake_ai):
    result = await call_classification.classify_content(None, "", "", provider=fake_ai)
    assert result.category == CallCategory.UNREVIEWED
    assert fake_ai.prompts == []


@pytest.mark.asyncio
async def test_classify_content_never_raises(fake_ai):
    fake_ai.fail = True
    result = await call_classification.classify_content(None, "hello there", "", provider=fake_ai)
    assert result.category == CallCategory.UNREVIEWED
    assert result.summary == "AI classification failed."


@pytest.mark.asyncio
async def test_classify_content_without_configured_provider():
    result = await call_classification.classify_content(None, "hello there", "")
    assert result.category == CallCategory.UNREVIEWED
