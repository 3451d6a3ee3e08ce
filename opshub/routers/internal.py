"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from an external cron when the in-process scheduler is not running.
"""

import secrets
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from opshub.core.config import settings
from opshub.core.rate_limit import INTERNAL_TRIGGER_LIMIT, limiter
from opshub.jobs import scheduled


router = APIRouter(prefix="/internal/scheduled", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not secrets.compare_digest(x_internal_secret, expected):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class CallsSyncRequest(BaseModel):
    user_id: UUID | None = None
    full_sync: bool = False


class FormJobsResponse(BaseModel):
    processed: int
    completed: int
    failed: int


class DueDateResponse(BaseModel):
    processed: int
    fired: int
    errors: int


@router.post("/calls-sync", dependencies=[Depends(verify_internal_secret)])
@limiter.limit(INTERNAL_TRIGGER_LIMIT)
async def calls_sync(request: Request, body: CallsSyncRequest | None = None) -> dict:
    """Sync one client (user_id) or every client with provider credentials."""
    body = body or CallsSyncRequest()
    return await scheduled.run_calls_sync(body.user_id, full_sync=body.full_sync)


@router.post(
    "/form-jobs",
    response_model=FormJobsResponse,
    dependencies=[Depends(verify_internal_secret)],
)
@limiter.limit(INTERNAL_TRIGGER_LIMIT)
async def form_jobs(request: Request):
    """Run one form submission job batch."""
    return await scheduled.run_form_jobs()


@router.post(
    "/task-due-dates",
    response_model=DueDateResponse,
    dependencies=[Depends(verify_internal_secret)],
)
@limiter.limit(INTERNAL_TRIGGER_LIMIT)
async def task_due_dates(request: Request):
    """Evaluate due-date task automations."""
    return await scheduled.run_due_date_automations()


@router.post("/purge-archived-tasks", dependencies=[Depends(verify_internal_secret)])
@limiter.limit(INTERNAL_TRIGGER_LIMIT)
async def purge_archived_tasks(request: Request) -> dict:
    return await scheduled.run_purge_archived_tasks()


@router.post("/redact-services", dependencies=[Depends(verify_internal_secret)])
@limiter.limit(INTERNAL_TRIGGER_LIMIT)
async def redact_services(request: Request) -> dict:
    return await scheduled.run_redact_services()
