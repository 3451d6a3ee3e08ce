"""Form job service - durable side-effect queue for form submissions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import FormJobStatus, FormJobType
from opshub.db.models import FormSubmission, FormSubmissionJob
from opshub.jobs.registry import JobHandler, resolve_job_handler
from opshub.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (FormJobStatus.PENDING.value, FormJobStatus.FAILED.value)
LAST_ERROR_MAX_CHARS = 2000


def idempotency_key_for(job_type: FormJobType, submission_id: UUID) -> str:
    prefix = "ctm" if job_type == FormJobType.CTM_CONVERSION else "email"
    return f"{prefix}_{submission_id}"


def planned_job_types(form_settings: dict | None) -> list[FormJobType]:
    """Job types a submission fans out to, given its form settings."""
    form_settings = form_settings or {}
    job_types = []
    if form_settings.get("ctm_enabled"):
        job_types.append(FormJobType.CTM_CONVERSION)
    if form_settings.get("email_recipients") and form_settings.get("email_on_submission") is not False:
        job_types.append(FormJobType.EMAIL_NOTIFICATION)
    return job_types


def enqueue_jobs_for_submission(
    db: Session,
    submission_id: UUID,
    form_settings: dict | None,
    *,
    now: datetime | None = None,
    max_attempts: int | None = None,
) -> list[UUID]:
    """
    Create side-effect jobs for a submission.

    Commits, so a submission flushed in the same session lands together with
    its jobs. Keys are deterministic; a repeated enqueue returns no new ids.
    """
    scheduled_at = now or utcnow()
    created: list[UUID] = []
    for job_type in planned_job_types(form_settings):
        key = idempotency_key_for(job_type, submission_id)
        existing = db.scalar(
            select(FormSubmissionJob.id).where(FormSubmissionJob.idempotency_key == key)
        )
        if existing:
            continue
        job = FormSubmissionJob(
            submission_id=submission_id,
            job_type=job_type.value,
            status=FormJobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or settings.MAX_JOB_ATTEMPTS,
            idempotency_key=key,
            scheduled_at=scheduled_at,
        )
        db.add(job)
        try:
            db.commit()
        except IntegrityError:
            # Concurrent enqueue won the unique key.
            db.rollback()
            continue
        created.append(job.id)
    return created


def compute_next_schedule(now: datetime, attempts: int, base_delay_seconds: float | None = None) -> datetime:
    """Backoff for a job that has failed `attempts` times before this failure."""
    base = settings.retry_base_delay_seconds if base_delay_seconds is None else base_delay_seconds
    return now + timedelta(seconds=base * (2**attempts))


def claim_jobs(db: Session, *, now: datetime, limit: int) -> list[FormSubmissionJob]:
    """
    Claim due jobs and mark them processing.

    Rows locked by another worker are skipped; the claim commits so the
    processing status is visible before any handler runs.
    """
    jobs = (
        db.scalars(
            select(FormSubmissionJob)
            .options(selectinload(FormSubmissionJob.submission).selectinload(FormSubmission.form))
            .where(
                FormSubmissionJob.status.in_(CLAIMABLE_STATUSES),
                FormSubmissionJob.attempts < FormSubmissionJob.max_attempts,
                FormSubmissionJob.scheduled_at <= now,
            )
            .order_by(FormSubmissionJob.scheduled_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        .all()
    )
    for job in jobs:
        job.status = FormJobStatus.PROCESSING.value
        job.started_at = now
    db.commit()
    return jobs


def mark_job_completed(db: Session, job: FormSubmissionJob, now: datetime) -> None:
    job.status = FormJobStatus.COMPLETED.value
    job.completed_at = now
    job.last_error = None
    submission = job.submission
    if job.job_type == FormJobType.CTM_CONVERSION.value:
        submission.ctm_sent = True
        submission.ctm_sent_at = now
    elif job.job_type == FormJobType.EMAIL_NOTIFICATION.value:
        submission.email_sent = True
        submission.email_sent_at = now
    db.commit()


def mark_job_failed(db: Session, job: FormSubmissionJob, error: str, now: datetime) -> None:
    job.scheduled_at = compute_next_schedule(now, job.attempts)
    job.status = FormJobStatus.FAILED.value
    job.attempts = job.attempts + 1
    job.last_error = (error or "Unknown error")[:LAST_ERROR_MAX_CHARS]
    db.commit()


def release_claimed_jobs(db: Session, job_ids: list[UUID]) -> int:
    """Return still-processing jobs to pending (worker shutdown)."""
    if not job_ids:
        return 0
    result = db.execute(
        update(FormSubmissionJob)
        .where(
            FormSubmissionJob.id.in_(job_ids),
            FormSubmissionJob.status == FormJobStatus.PROCESSING.value,
        )
        .values(status=FormJobStatus.PENDING.value, started_at=None)
    )
    db.commit()
    return result.rowcount or 0


async def process_batch(
    db: Session,
    *,
    now: datetime | None = None,
    batch_size: int | None = None,
    resolve_handler: Callable[[str], JobHandler] = resolve_job_handler,
) -> dict:
    """
    Claim and run one batch. Every claimed job ends completed or failed.

    Returns counts for metrics: processed, completed, failed.
    """
    claimed_at = now or utcnow()
    jobs = claim_jobs(db, now=claimed_at, limit=batch_size or settings.FORM_JOB_BATCH_SIZE)
    counts = {"processed": len(jobs), "completed": 0, "failed": 0}
    pending_ids = [job.id for job in jobs]

    try:
        for job in jobs:
            log_ctx = build_log_context(
                job_id=job.id, submission_id=job.submission_id, component="form_jobs"
            )
            logger.info(
                "Processing form job (type=%s, attempt=%s)",
                job.job_type,
                job.attempts + 1,
                extra=log_ctx,
            )
            try:
                handler = resolve_handler(job.job_type)
                await handler(db, job)
            except Exception as exc:
                db.rollback()
                logger.warning(
                    "Form job failed: %s", type(exc).__name__, extra=log_ctx
                )
                try:
                    mark_job_failed(db, job, str(exc) or type(exc).__name__, now or utcnow())
                    counts["failed"] += 1
                except SQLAlchemyError:
                    db.rollback()
                    logger.exception("Failed to record form job failure", extra=log_ctx)
                    continue
                pending_ids.remove(job.id)
                continue

            try:
                mark_job_completed(db, job, now or utcnow())
                counts["completed"] += 1
                pending_ids.remove(job.id)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Failed to record form job completion", extra=log_ctx)
    finally:
        if pending_ids:
            try:
                released = release_claimed_jobs(db, pending_ids)
                if released:
                    logger.info("Released %s claimed form jobs", released)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("Failed to release claimed form jobs")

    return counts


def job_status(db: Session, job_id: UUID) -> FormSubmissionJob | None:
    return db.get(FormSubmissionJob, job_id)


def list_jobs_for_submission(db: Session, submission_id: UUID) -> list[FormSubmissionJob]:
    return list(
        db.scalars(
            select(FormSubmissionJob)
            .where(FormSubmissionJob.submission_id == submission_id)
            .order_by(FormSubmissionJob.created_at)
        ).all()
    )


def due_job_count(db: Session, now: datetime | None = None) -> int:
    """Jobs currently eligible for claim."""
    current = ensure_utc(now) if now else utcnow()
    return (
        db.scalar(
            select(func.count(FormSubmissionJob.id)).where(
                FormSubmissionJob.status.in_(CLAIMABLE_STATUSES),
                FormSubmissionJob.attempts < FormSubmissionJob.max_attempts,
                FormSubmissionJob.scheduled_at <= current,
            )
        )
        or 0
    )
