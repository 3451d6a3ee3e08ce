"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from opshub.db.base import Base
from opshub.db.enums import DEFAULT_FORM_JOB_STATUS, DEFAULT_MAX_JOB_ATTEMPTS
from opshub.db.types import JSONBag, NullableJSONBag
from opshub.utils.datetime_utils import utcnow


class FormDefinition(Base):
    """
    A published form.

    `settings_json` drives submission side effects: `ctm_enabled`,
    `ctm_conversion_action_id`, `ctm_five_star_enabled`, `email_recipients`,
    `email_on_submission`, `email_subject`, `email_from`.
    """

    __tablename__ = "form_definitions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    form_type: Mapped[str] = mapped_column(String(20), nullable=False, default="conversion")
    settings_json: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class FormSubmission(Base):
    """
    A stored public form submission.

    Exactly one of `encrypted_payload` (intake, PHI) and `non_phi_payload`
    (conversion) is set.
    """

    __tablename__ = "form_submissions"
    __table_args__ = (
        CheckConstraint(
            "(encrypted_payload IS NULL) <> (non_phi_payload IS NULL)",
            name="ck_form_submissions_one_payload",
        ),
        Index("idx_form_submissions_form", "form_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    form_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("form_definitions.id", ondelete="CASCADE"), nullable=False
    )
    form_version_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    submission_kind: Mapped[str] = mapped_column(String(20), nullable=False)

    encrypted_payload: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    non_phi_payload: Mapped[dict | None] = mapped_column(NullableJSONBag, nullable=True)
    attribution: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)

    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    embed_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)

    ctm_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    ctm_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    email_sent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    form: Mapped["FormDefinition"] = relationship()
    jobs: Mapped[list["FormSubmissionJob"]] = relationship(
        back_populates="submission", cascade="all, delete-orphan"
    )


class FormSubmissionJob(Base):
    """
    Durable side-effect job for a form submission.

    pending -> processing -> completed | failed. Failed jobs are claimed again
    once `scheduled_at` passes while attempts < max_attempts.
    """

    __tablename__ = "form_submission_jobs"
    __table_args__ = (
        Index("idx_form_jobs_due", "status", "scheduled_at"),
        Index("idx_form_jobs_submission", "submission_id"),
        CheckConstraint("attempts <= max_attempts", name="ck_form_jobs_attempts"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    submission_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("form_submissions.id", ondelete="CASCADE"), nullable=False
    )
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_FORM_JOB_STATUS.value, nullable=False
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        default=DEFAULT_MAX_JOB_ATTEMPTS,
        server_default=text(str(DEFAULT_MAX_JOB_ATTEMPTS)),
        nullable=False,
    )
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    submission: Mapped["FormSubmission"] = relationship(back_populates="jobs")
