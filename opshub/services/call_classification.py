"""Call classification: category taxonomy, AI prompt and lenient parsing.

AI output is free text. It enters the closed `CallCategory` set only through
`canonicalize_category`; everything downstream compares enum members.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from opshub.core.config import settings
from opshub.db.enums import CallCategory
from opshub.services import ai_provider
from opshub.services.ai_provider import AIProvider

logger = logging.getLogger(__name__)

CATEGORY_DEFINITIONS = """
CATEGORIES (use exactly these values):
- converted: Caller explicitly agreed to purchase/book a service
- warm: Promising lead interested in services
- very_good: Ready to book/buy now, high intent
- needs_attention: Left voicemail requesting callback or follow-up
- voicemail: Voicemail with no actionable details
- unanswered: No conversation occurred, no message left
- not_a_fit: Caller is not a fit for services (wrong service type, outside service area, etc.)
- spam: Telemarketer, robocall, wrong number, or irrelevant sales call
- neutral: General inquiry or information request, unclear intent
- applicant: ONLY use if caller explicitly asks about jobs, careers, employment, or applying for a position at the company. Do NOT use for service inquiries.

Respond ONLY with JSON: {"category":"<category>","summary":"One sentence summary"}
""".strip()

CLASSIFY_TEMPERATURE = 0.2
CLASSIFY_MAX_TOKENS = 200
MAX_CONTENT_CHARS = 6000

CATEGORY_ALIASES: dict[str, CallCategory] = {
    "very_hot": CallCategory.VERY_GOOD,
    "very-hot": CallCategory.VERY_GOOD,
    "hot": CallCategory.VERY_GOOD,
    "negative": CallCategory.NOT_A_FIT,
    "not-a-fit": CallCategory.NOT_A_FIT,
    "needs-attention": CallCategory.NEEDS_ATTENTION,
    "very-good": CallCategory.VERY_GOOD,
}

# First match wins.
CATEGORY_PATTERNS: list[tuple[str, tuple[str, ...]]] = [
    ("converted", ("converted", "agreed to service", "booked", "scheduled appointment", "signed up")),
    ("needs_attention", ("needs_attention", "needs attention", "attention needed")),
    ("very_hot", ("very hot", "ready to book", "ready to schedule")),
    ("warm", ("warm", "interested lead", "promising lead")),
    ("voicemail", ("voicemail", "voice mail")),
    ("unanswered", ("unanswered", "no answer", "no response")),
    ("not_a_fit", ("not a fit", "not interested", "unhappy", "negative")),
    ("spam", ("spam", "telemarketer", "scam", "robocall")),
    ("neutral", ("neutral", "general inquiry", "info request")),
    (
        "applicant",
        (
            "job opening",
            "job inquiry",
            "career opportunity",
            "employment inquiry",
            "hiring",
            "looking for work",
            "seeking employment",
            "job applicant",
            "resume",
            "cv submission",
        ),
    ),
]

RATING_CATEGORIES: dict[int, CallCategory] = {
    1: CallCategory.SPAM,
    2: CallCategory.NOT_A_FIT,
    3: CallCategory.VERY_GOOD,
    4: CallCategory.VERY_GOOD,
    5: CallCategory.CONVERTED,
}

AUTO_STAR_RATINGS: dict[CallCategory, int] = {
    CallCategory.SPAM: 1,
    CallCategory.NOT_A_FIT: 2,
    CallCategory.WARM: 3,
    CallCategory.VERY_GOOD: 3,
    CallCategory.NEEDS_ATTENTION: 3,
}

_JSON_CATEGORY_RE = re.compile(r'"category"\s*:\s*"([^"]+)"', re.IGNORECASE)
_JSON_SUMMARY_RE = re.compile(r'"summary"\s*:\s*"([^"]+)"', re.IGNORECASE)


@dataclass
class ClassificationResult:
    classification: str
    summary: str
    category: CallCategory


def canonicalize_category(value: str | CallCategory | None) -> CallCategory:
    """Map free text into the closed category set; unknown -> unreviewed."""
    if isinstance(value, CallCategory):
        return value
    slug = re.sub(r"\s+", "_", str(value or "").strip().lower())
    if not slug:
        return CallCategory.UNREVIEWED
    if CallCategory.has_value(slug):
        return CallCategory(slug)
    return CATEGORY_ALIASES.get(slug, CallCategory.UNREVIEWED)


def rating_to_category(score: int | None) -> CallCategory | None:
    """Category implied by a provider star rating; None when unrated."""
    return RATING_CATEGORIES.get(score or 0)


def auto_star_rating(category: CallCategory) -> int:
    """Score derived from an AI category. Never 4 or 5 (operator-only)."""
    return AUTO_STAR_RATINGS.get(category, 0)


def infer_category_from_text(text: str | None) -> str | None:
    lowered = (text or "").lower()
    for key, phrases in CATEGORY_PATTERNS:
        if any(phrase in lowered for phrase in phrases):
            return key
    return None


def build_system_prompt(business_prompt: str | None) -> str:
    return f"{business_prompt or settings.DEFAULT_AI_PROMPT}\n\n{CATEGORY_DEFINITIONS}"


def parse_classification(raw: str) -> ClassificationResult:
    """
    Leniently parse AI output.

    Strict JSON first, then regex extraction of "category"/"summary", then
    phrase inference over the raw text and finally over the summary.
    """
    classification = raw
    summary = raw
    if raw.strip().startswith("{"):
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            classification = str(parsed.get("category") or classification)
            summary = str(parsed.get("summary") or summary)

    if not classification or classification == raw:
        match = _JSON_CATEGORY_RE.search(raw)
        if match:
            classification = match.group(1)
    if not summary or summary == raw:
        match = _JSON_SUMMARY_RE.search(raw)
        if match:
            summary = match.group(1)
    if not classification or classification == raw:
        inferred = infer_category_from_text(raw)
        if inferred:
            classification = inferred

    category = canonicalize_category(classification)
    if category == CallCategory.UNREVIEWED:
        inferred = infer_category_from_text(summary)
        if inferred:
            category = canonicalize_category(inferred)
            classification = inferred

    return ClassificationResult(classification=classification, summary=summary, category=category)


async def classify_content(
    business_prompt: str | None,
    transcript: str,
    message: str,
    *,
    provider: AIProvider | None = None,
) -> ClassificationResult:
    """Classify a transcript (preferred) or message body. Never raises."""
    content = transcript or message
    if not content:
        return ClassificationResult(
            classification=CallCategory.UNREVIEWED.value,
            summary="No transcript or message available.",
            category=CallCategory.UNREVIEWED,
        )

    label = "Caller transcript:\n" if transcript else "Form or message content:\n"
    try:
        raw = await ai_provider.generate(
            f"{label}{content[:MAX_CONTENT_CHARS]}",
            system_prompt=build_system_prompt(business_prompt),
            temperature=CLASSIFY_TEMPERATURE,
            max_tokens=CLASSIFY_MAX_TOKENS,
            model=settings.classifier_model,
            provider=provider,
        )
    except Exception as exc:
        logger.warning(
            "AI classification failed: %s",
            type(exc).__name__,
            extra={"component": "call_classification"},
        )
        return ClassificationResult(
            classification=CallCategory.UNREVIEWED.value,
            summary="AI classification failed.",
            category=CallCategory.UNREVIEWED,
        )

    result = parse_classification(raw)
    if not result.classification or not result.summary:
        logger.warning("Empty classification or summary", extra={"category": result.category.value})
    return result
