"""Data normalization utilities for consistent matching."""

import re
from typing import Optional

MIN_PHONE_DIGITS = 7


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number for caller matching.

    Strips every non-digit character, keeping a leading "+". Numbers with
    fewer than 7 digits are treated as absent (None).

    - "(555) 123-4567" -> "5551234567"
    - "+1 555.123.4567" -> "+15551234567"
    """
    if not phone:
        return None
    cleaned = str(phone).strip()
    digits = re.sub(r"\D", "", cleaned)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    if cleaned.startswith("+"):
        return f"+{digits}"
    return digits


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lowercase and strip whitespace from email."""
    if not email:
        return None
    return email.strip().lower() or None
