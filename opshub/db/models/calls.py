"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from opshub.db.base import Base
from opshub.db.types import JSONBag
from opshub.utils.datetime_utils import utcnow


class CallLog(Base):
    """
    One call-provider record for a client.

    `score` 0 means unrated. `meta` holds the denormalized provider fields,
    the last classification, the displayed category and enrichment flags.
    """

    __tablename__ = "call_logs"
    __table_args__ = (
        UniqueConstraint("user_id", "call_id", name="uq_call_logs_user_call"),
        CheckConstraint("score >= 0 AND score <= 5", name="ck_call_logs_score_range"),
        Index("idx_call_logs_user_started", "user_id", "started_at"),
        Index(
            "idx_call_logs_user_caller",
            "user_id",
            text("(meta ->> 'caller_number_normalized')"),
        ).ddl_if(dialect="postgresql"),
        Index(
            "idx_call_logs_user_category",
            "user_id",
            text("(meta ->> 'category')"),
        ).ddl_if(dialect="postgresql"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    call_id: Mapped[str] = mapped_column(String(128), nullable=False)
    direction: Mapped[str | None] = mapped_column(String(20), nullable=True)
    from_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    to_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    duration_sec: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    meta: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
