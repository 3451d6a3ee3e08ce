"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from opshub.db.enums import FormJobType
from opshub.jobs.handlers import form_submissions

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    FormJobType.CTM_CONVERSION.value: form_submissions.process_ctm_conversion,
    FormJobType.EMAIL_NOTIFICATION.value: form_submissions.process_email_notification,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
