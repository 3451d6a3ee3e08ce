"""Structured logging helpers (PHI-safe)."""

from typing import Any
from uuid import UUID


def build_log_context(
    *,
    user_id: UUID | str | None = None,
    job_id: UUID | str | None = None,
    submission_id: UUID | str | None = None,
    call_id: str | None = None,
    item_id: UUID | str | None = None,
    automation_id: UUID | str | None = None,
    component: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict (identifiers only, never payload values)."""
    context: dict[str, Any] = {}
    if component:
        context["component"] = component
    if user_id:
        context["user_id"] = str(user_id)
    if job_id:
        context["job_id"] = str(job_id)
    if submission_id:
        context["submission_id"] = str(submission_id)
    if call_id:
        context["call_id"] = str(call_id)
    if item_id:
        context["item_id"] = str(item_id)
    if automation_id:
        context["automation_id"] = str(automation_id)
    return context
