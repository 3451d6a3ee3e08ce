"""Caller identity enrichment against a client's own customer records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from opshub.db.enums import CallerType
from opshub.db.models import ActiveClient, CallLog
from opshub.utils.datetime_utils import utcnow
from opshub.utils.normalization import normalize_phone

PREVIOUS_CALLS_LIMIT = 10


@dataclass
class CallerEnrichment:
    caller_type: CallerType = CallerType.NEW
    active_client_id: UUID | None = None
    active_client: dict | None = None
    call_sequence: int = 1
    previous_calls: list[dict] = field(default_factory=list)

    def as_meta(self) -> dict:
        return {
            "caller_type": self.caller_type.value,
            "active_client_id": str(self.active_client_id) if self.active_client_id else None,
            "active_client": self.active_client,
            "call_sequence": self.call_sequence,
            "previous_calls": self.previous_calls,
        }


def _caller_phone_filter(user_id: UUID, phone: str, exclude_call_id: str | None):
    filters = [
        CallLog.user_id == user_id,
        CallLog.meta["caller_number_normalized"].as_string() == phone,
    ]
    if exclude_call_id:
        filters.append(CallLog.call_id != exclude_call_id)
    return filters


def find_active_client_by_phone(
    db: Session, owner_user_id: UUID, phone: str, *, now: datetime | None = None
) -> ActiveClient | None:
    """Unarchived (or future-archived) active client with this normalized phone."""
    current = now or utcnow()
    return db.scalars(
        select(ActiveClient)
        .where(
            ActiveClient.owner_user_id == owner_user_id,
            ActiveClient.client_phone_normalized == phone,
            or_(ActiveClient.archived_at.is_(None), ActiveClient.archived_at > current),
        )
        .order_by(ActiveClient.created_at)
        .limit(1)
    ).first()


def enrich_caller_type(
    db: Session,
    user_id: UUID,
    phone_number: str | None,
    *,
    current_call_id: str | None = None,
    now: datetime | None = None,
) -> CallerEnrichment:
    """
    Classify the caller as new, repeat or returning_customer.

    Returning customers match an active client by phone; otherwise prior
    calls from the same number make the caller a repeat.
    """
    phone = normalize_phone(phone_number)
    if not phone:
        return CallerEnrichment()

    filters = _caller_phone_filter(user_id, phone, current_call_id)
    prior_count = db.scalar(select(func.count()).select_from(CallLog).where(*filters)) or 0
    previous_rows = db.scalars(
        select(CallLog)
        .where(*filters)
        .order_by(CallLog.started_at.desc())
        .limit(PREVIOUS_CALLS_LIMIT)
    ).all()
    previous_calls = [
        {
            "call_id": row.call_id,
            "started_at": row.started_at.isoformat() if row.started_at else None,
            "score": row.score,
            "classification": (row.meta or {}).get("classification"),
            "summary": (row.meta or {}).get("classification_summary"),
        }
        for row in previous_rows
    ]

    client = find_active_client_by_phone(db, user_id, phone, now=now)
    if client:
        return CallerEnrichment(
            caller_type=CallerType.RETURNING_CUSTOMER,
            active_client_id=client.id,
            active_client={"id": str(client.id), "client_name": client.client_name},
            call_sequence=prior_count + 1,
            previous_calls=previous_calls,
        )
    if prior_count:
        return CallerEnrichment(
            caller_type=CallerType.REPEAT,
            call_sequence=prior_count + 1,
            previous_calls=previous_calls,
        )
    return CallerEnrichment()
