"""Scheduled job bodies, shared by the scheduler, internal triggers and CLI."""

from __future__ import annotations

import logging
from uuid import UUID

import anyio

from opshub.db.session import SessionLocal, session_scope
from opshub.services import (
    call_sync_service,
    form_job_service,
    task_cleanup_service,
)
from opshub.services.task_automation_engine import TaskAutomationEngine

logger = logging.getLogger(__name__)


async def run_calls_sync(user_id: UUID | None = None, *, full_sync: bool = False) -> dict:
    """Sync one client, or every client with credentials."""
    if user_id is None:
        reports = await call_sync_service.sync_all_clients(SessionLocal)
        return {"clients": len(reports), "reports": reports}
    with SessionLocal() as db:
        report = await call_sync_service.sync_client(db, user_id, full_sync=full_sync)
    return {"clients": 1, "reports": {str(user_id): report.as_dict()}}


async def run_form_jobs() -> dict:
    with SessionLocal() as db:
        result = await form_job_service.process_batch(db)
    if result["processed"]:
        logger.info(
            "Form jobs batch: %s processed, %s completed, %s failed",
            result["processed"],
            result["completed"],
            result["failed"],
        )
    return result


def _run_due_dates_sync() -> dict:
    with session_scope() as db:
        return TaskAutomationEngine().run_due_date_automations(db)


async def run_due_date_automations() -> dict:
    return await anyio.to_thread.run_sync(_run_due_dates_sync)


def _purge_archived_sync() -> dict:
    with session_scope() as db:
        return {"deleted": task_cleanup_service.purge_archived_tasks(db)}


async def run_purge_archived_tasks() -> dict:
    return await anyio.to_thread.run_sync(_purge_archived_sync)


def _redact_services_sync() -> dict:
    with session_scope() as db:
        return {"redacted": task_cleanup_service.redact_old_services(db)}


async def run_redact_services() -> dict:
    return await anyio.to_thread.run_sync(_redact_services_sync)
