"""Form submission job handlers."""

from __future__ import annotations

import logging

from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import SubmissionKind
from opshub.jobs.utils import mask_email
from opshub.services import crm_conversion_service, email_service
from opshub.utils.datetime_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

PHI_NOTICE = "This is a PHI submission. View the full submission in the dashboard."


def _attribution_fields(attribution: dict | None) -> dict:
    attribution = attribution or {}
    utms = attribution.get("utms") if isinstance(attribution.get("utms"), dict) else {}
    return {
        **utms,
        "referrer": attribution.get("referrer") or None,
        "landing_page": attribution.get("landing_page") or None,
    }


def build_conversion_payload(submission, form, *, timestamp=None) -> dict:
    """
    CRM conversion payload.

    Intake submissions carry form metadata and attribution only; the form
    body never leaves the system.
    """
    form_settings = form.settings_json or {}
    sent_at = (timestamp or utcnow()).isoformat()
    base = {
        "form_name": form.name,
        "form_id": str(form.id),
        "submission_id": str(submission.id),
        "timestamp": sent_at,
    }
    if submission.submission_kind == SubmissionKind.INTAKE.value:
        return {
            **base,
            "conversion_type": "intake_completed",
            "five_star_lead": bool(form_settings.get("ctm_five_star_enabled", False)),
            **_attribution_fields(submission.attribution),
        }
    # Form fields never override the submission metadata.
    return {
        **(submission.non_phi_payload or {}),
        **_attribution_fields(submission.attribution),
        **base,
        "conversion_type": "contact_form",
    }


def _field_label(key: str) -> str:
    return " ".join(part.capitalize() for part in str(key).replace("_", " ").split())


def build_notification_email(submission, form) -> tuple[str, str]:
    """Return (subject, text body). Intake bodies reference the id only."""
    form_settings = form.settings_json or {}
    is_intake = submission.submission_kind == SubmissionKind.INTAKE.value
    submitted_at = ensure_utc(submission.created_at) or utcnow()
    submitted_local = submitted_at.astimezone(settings.operational_tz)

    lines = [
        "New form submission received.",
        "",
        f"Form: {form.name}",
        f"Type: {'Intake (PHI)' if is_intake else 'Contact'}",
        f"Submitted: {submitted_local.strftime('%Y-%m-%d %I:%M %p %Z')}",
        "",
    ]
    if is_intake:
        lines.append(PHI_NOTICE)
        lines.append(f"Submission ID: {submission.id}")
    else:
        lines.append("--- Form Data ---")
        for key, value in (submission.non_phi_payload or {}).items():
            lines.append(f"{_field_label(key)}: {value}")

    subject = form_settings.get("email_subject") or f"New {form.name} Submission"
    return subject, "\n".join(lines) + "\n"


async def process_ctm_conversion(db, job) -> None:
    """Send the CRM conversion event for a submission."""
    submission = job.submission
    form = submission.form
    payload = build_conversion_payload(submission, form)
    result = await crm_conversion_service.send_conversion(payload, form.settings_json)
    if result.get("skipped"):
        logger.info(
            "CRM conversion skipped (%s)",
            result.get("reason"),
            extra=build_log_context(job_id=job.id, submission_id=submission.id, component="form_jobs"),
        )


async def process_email_notification(db, job) -> None:
    """
    Email every configured recipient.

    Any single failure raises so the whole job retries.
    """
    submission = job.submission
    form = submission.form
    form_settings = form.settings_json or {}
    recipients = [r for r in (form_settings.get("email_recipients") or []) if r]
    log_ctx = build_log_context(job_id=job.id, submission_id=submission.id, component="form_jobs")
    if not recipients:
        logger.info("Email notification skipped: no recipients", extra=log_ctx)
        return

    sender = email_service.get_email_sender()
    if sender is None:
        raise email_service.EmailNotConfiguredError("Mailgun is not configured")

    subject, text = build_notification_email(submission, form)
    html = email_service.text_to_html(text)
    for recipient in recipients:
        try:
            await sender.send(
                recipient,
                subject,
                text,
                html=html,
                from_email=form_settings.get("email_from") or None,
            )
        except email_service.EmailSendError:
            logger.warning(
                "Submission email to %s failed", mask_email(recipient), extra=log_ctx
            )
            raise
