"""Field extraction for raw call-provider records.

Provider payloads vary by account and activity type (calls, texts, form
fills), so every field is read through a fallback chain of known names.
Everything here is pure.
"""

from __future__ import annotations

import base64
import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

from opshub.utils.datetime_utils import parse_provider_timestamp

CALL_ID_FIELDS = ("id", "call_id", "sid", "uuid", "callSid", "call_uuid", "callId")
UNIX_TIME_FIELDS = ("unix_time", "unixTime", "unix_timestamp")
TIMESTAMP_FIELDS = ("start_time", "started_at", "call_time", "created_at", "timestamp")
DURATION_FIELDS = ("duration", "duration_sec", "duration_seconds", "talk_time", "call_duration")
STATUS_FIELDS = ("status", "result", "call_status", "callResult")

STUB_PREFIXES = (
    "new call from:",
    "repeat call from:",
    "caller transcript:",
    "call from:",
    "website visitor",
)
STUB_EXACT = frozenset({"website"})

MIN_MESSAGE_LENGTH = 10
TRANSCRIPT_URL_BASE = "https://calltrackingapp.com/calls"


def _first(raw: dict, fields: tuple[str, ...]) -> Any:
    for field in fields:
        value = raw.get(field)
        if value:
            return value
    return None


def _as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def get_call_id(raw: dict) -> str | None:
    value = _first(raw, CALL_ID_FIELDS)
    return str(value) if value else None


def format_form_payload(payload: Any) -> str:
    """Flatten a form payload into `key: value` lines."""
    if not payload:
        return ""
    if isinstance(payload, str):
        return payload.strip()
    if isinstance(payload, list):
        return "\n".join(part for part in (format_form_payload(entry) for entry in payload) if part)
    if isinstance(payload, dict):
        parts = []
        for key, value in payload.items():
            if value is None or value == "":
                continue
            if isinstance(value, (dict, list)):
                parts.append(f"{key}: {format_form_payload(value)}")
            else:
                parts.append(f"{key}: {value}")
        return "\n".join(parts)
    return ""


def build_message(raw: dict) -> str:
    if raw.get("message_body"):
        return str(raw["message_body"])
    if raw.get("notes"):
        return str(raw["notes"])
    for field in ("form_submission", "form_data"):
        if raw.get(field):
            return format_form_payload(raw[field])
    form = raw.get("form")
    if isinstance(form, dict) and form.get("custom"):
        return format_form_payload(form["custom"])
    if form:
        return format_form_payload(form)
    return ""


def get_transcript(raw: dict) -> str:
    transcription = _as_dict(raw.get("transcription"))
    if transcription.get("text"):
        return str(transcription["text"])
    if raw.get("transcription_text"):
        return str(raw["transcription_text"])
    if raw.get("transcript"):
        return str(raw["transcript"])
    return ""


def build_region(raw: dict) -> str:
    pieces = []
    if raw.get("cnam"):
        pieces.append(str(raw["cnam"]))
    caller = _as_dict(raw.get("caller"))
    address = _as_dict(caller.get("address"))
    city = caller.get("city") or address.get("city") or raw.get("city") or raw.get("caller_city")
    state = caller.get("state") or address.get("state") or raw.get("state") or raw.get("caller_state")
    country = caller.get("country") or address.get("country") or raw.get("country")
    location = [str(part) for part in (city, state, country) if part]
    if location:
        pieces.append(", ".join(location))
    return " · ".join(pieces)


def get_source(raw: dict) -> str:
    return str(
        _first(
            raw,
            ("tracking_number_name", "source", "campaign_name", "tracking_label", "campaign_source"),
        )
        or "Calls"
    )


def sanitize_source_key(value: str | None) -> str:
    key = re.sub(r"[^\w]+", "_", str(value or "").strip().lower()).strip("_")
    return key or "unknown"


def get_caller_name(raw: dict) -> str:
    caller = _as_dict(raw.get("caller"))
    return str(caller.get("name") or raw.get("name") or raw.get("caller_name") or "")


def get_caller_number(raw: dict) -> str:
    caller = _as_dict(raw.get("caller"))
    return str(
        caller.get("number")
        or _first(raw, ("contact_number", "caller_number", "phone_number", "from_number"))
        or ""
    )


def get_to_number(raw: dict) -> str:
    return str(
        _first(raw, ("tracking_number", "to_number", "dialed_number", "number_dialed")) or ""
    )


def _to_int(value: Any) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def get_duration(raw: dict) -> int | None:
    value = _first(raw, DURATION_FIELDS)
    if value is None:
        return None
    return _to_int(value) or None


def get_provider_score(raw: dict) -> int:
    """Provider star rating clamped to 0..5 (0 = unrated)."""
    sale = _as_dict(raw.get("sale"))
    score = _to_int(sale.get("score") or raw.get("score") or 0)
    return max(0, min(5, score))


def parse_call_timestamp(raw: dict) -> tuple[datetime | None, int | None]:
    """Return (started_at, unix_time), preferring explicit unix fields."""
    unix_candidate = _first(raw, UNIX_TIME_FIELDS)
    if unix_candidate is not None:
        seconds = _to_int(unix_candidate)
        if seconds > 0:
            started = parse_provider_timestamp(seconds)
            if started:
                return started, seconds
    for field in TIMESTAMP_FIELDS:
        started = parse_provider_timestamp(raw.get(field))
        if started:
            return started, int(started.timestamp())
    return None, None


def build_transcript_url(unix_time: int | None) -> str:
    if not unix_time:
        return ""
    after = base64.b64encode(str(unix_time).encode()).decode()
    return f"{TRANSCRIPT_URL_BASE}#after={quote(after, safe='')}&callNav=caller_transcription"


def extract_assets(raw: dict) -> list[dict]:
    assets: list[dict] = []
    fallback_id = raw.get("id") or raw.get("call_id")
    recordings = raw.get("recordings")
    if isinstance(recordings, list):
        for index, rec in enumerate(recordings):
            rec = _as_dict(rec)
            url = rec.get("public_url") or rec.get("url")
            if not url:
                continue
            assets.append(
                {
                    "id": str(rec.get("id") or rec.get("uuid") or f"{fallback_id or 'rec'}-{index}"),
                    "name": rec.get("name") or "Recording",
                    "url": url,
                    "created_at": rec.get("created_at"),
                }
            )
    elif raw.get("recording_url"):
        assets.append(
            {
                "id": f"recording_{fallback_id or 'call'}",
                "name": "Recording",
                "url": raw["recording_url"],
                "created_at": raw.get("started_at"),
            }
        )
    return assets


def determine_activity_type(direction: str | None) -> str:
    value = str(direction or "").lower()
    if "msg" in value or "sms" in value:
        return "sms"
    if "form" in value:
        return "form"
    if "email" in value:
        return "email"
    if "inbound" in value or "outbound" in value:
        return "call"
    return "other"


def _status_text(raw: dict, fields: tuple[str, ...]) -> str:
    return " ".join(str(raw[field]) for field in fields if raw.get(field)).lower()


def _action_texts(raw: dict) -> list[str]:
    actions = raw.get("actions")
    if not isinstance(actions, list):
        return []
    texts = []
    for action in actions:
        action = _as_dict(action)
        texts.append(f"{action.get('event') or ''} {action.get('name') or ''}".lower())
    return texts


def is_voicemail(raw: dict) -> bool:
    status = _status_text(raw, STATUS_FIELDS + ("direction",))
    if "voicemail" in status or "voice mail" in status:
        return True
    return any("voicemail" in text or "voice mail" in text for text in _action_texts(raw))


def is_likely_unanswered(raw: dict) -> bool:
    """Missed/busy/no-answer, or zero duration without a voicemail."""
    duration = 0
    for field in ("duration", "duration_sec", "talk_time", "time_on_phone"):
        duration = _to_int(raw.get(field))
        if duration:
            break
    status = _status_text(raw, STATUS_FIELDS)
    if duration == 0 and "voicemail" in status:
        return False
    if duration == 0 or any(
        marker in status for marker in ("missed", "unanswered", "no answer", "busy")
    ):
        return True
    return any(
        marker in text
        for text in _action_texts(raw)
        for marker in ("missed", "unanswered", "no answer")
    )


def is_stub_message(text: str | None) -> bool:
    """True for synthetic provider bodies that carry no caller content."""
    normalized = (text or "").strip().lower()
    if not normalized:
        return False
    return normalized.startswith(STUB_PREFIXES) or normalized in STUB_EXACT


def has_conversation(transcript: str, message: str) -> bool:
    if transcript and transcript.strip():
        return True
    return bool(
        message
        and not is_stub_message(message)
        and len(message.strip()) > MIN_MESSAGE_LENGTH
    )
