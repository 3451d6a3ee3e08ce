"""Call ingestion enums."""

from enum import Enum


class CallCategory(str, Enum):
    """Closed set of lead categories shown for a call."""

    CONVERTED = "converted"
    WARM = "warm"
    VERY_GOOD = "very_good"
    NEEDS_ATTENTION = "needs_attention"
    APPLICANT = "applicant"
    VOICEMAIL = "voicemail"
    UNANSWERED = "unanswered"
    NOT_A_FIT = "not_a_fit"
    SPAM = "spam"
    NEUTRAL = "neutral"
    UNREVIEWED = "unreviewed"  # AI not yet run or produced nothing usable

    @classmethod
    def has_value(cls, value: str) -> bool:
        return value in cls._value2member_map_


class CallerType(str, Enum):
    """Relationship of a caller to the client's existing records."""

    NEW = "new"
    REPEAT = "repeat"
    RETURNING_CUSTOMER = "returning_customer"
