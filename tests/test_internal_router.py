"""Tests for internal scheduled-job endpoints and worker health."""

import uuid

import pytest

from opshub.core.config import settings
from opshub.core.rate_limit import limiter
from opshub.jobs import scheduled
from opshub.services import task_automation_service
from opshub.utils.datetime_utils import local_today, utcnow

HEADERS = {"X-Internal-Secret": "test-internal-secret"}


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.mark.asyncio
async def test_missing_secret_header_is_rejected(worker_client):
    response = await worker_client.post("/internal/scheduled/form-jobs")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_wrong_secret_is_forbidden(worker_client):
    response = await worker_client.post(
        "/internal/scheduled/form-jobs", headers={"X-Internal-Secret": "guess"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unconfigured_secret_returns_501(worker_client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")
    response = await worker_client.post("/internal/scheduled/form-jobs", headers=HEADERS)
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_form_jobs_trigger(worker_client, monkeypatch):
    async def _fake():
        return {"processed": 2, "completed": 1, "failed": 1}

    monkeypatch.setattr(scheduled, "run_form_jobs", _fake)

    response = await worker_client.post("/internal/scheduled/form-jobs", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"processed": 2, "completed": 1, "failed": 1}


@pytest.mark.asyncio
async def test_calls_sync_trigger_passes_body(worker_client, monkeypatch):
    seen = {}

    async def _fake(user_id=None, *, full_sync=False):
        seen["args"] = (user_id, full_sync)
        return {"clients": 1, "reports": {}}

    monkeypatch.setattr(scheduled, "run_calls_sync", _fake)
    user_id = uuid.uuid4()

    response = await worker_client.post(
        "/internal/scheduled/calls-sync",
        headers=HEADERS,
        json={"user_id": str(user_id), "full_sync": True},
    )
    assert response.status_code == 200
    assert seen["args"] == (user_id, True)

    response = await worker_client.post("/internal/scheduled/calls-sync", headers=HEADERS)
    assert response.status_code == 200
    assert seen["args"] == (None, False)


@pytest.mark.asyncio
async def test_retention_triggers(worker_client, monkeypatch):
    async def _purge():
        return {"deleted": 3}

    async def _redact():
        return {"redacted": 1}

    monkeypatch.setattr(scheduled, "run_purge_archived_tasks", _purge)
    monkeypatch.setattr(scheduled, "run_redact_services", _redact)

    purge = await worker_client.post("/internal/scheduled/purge-archived-tasks", headers=HEADERS)
    redact = await worker_client.post("/internal/scheduled/redact-services", headers=HEADERS)

    assert purge.json() == {"deleted": 3}
    assert redact.json() == {"redacted": 1}


@pytest.mark.asyncio
async def test_due_date_trigger_runs_engine(worker_client, db, admin_user, task_board, task_item):
    task_automation_service.create_board_automation(
        db,
        task_board.id,
        name="due today",
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": 0},
        action_type="notify_admins",
    )
    task_item.due_date = local_today(settings.operational_tz, utcnow())
    db.commit()

    response = await worker_client.post("/internal/scheduled/task-due-dates", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {"processed": 1, "fired": 1, "errors": 0}


@pytest.mark.asyncio
async def test_health(worker_client):
    response = await worker_client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == settings.VERSION
    assert body["scheduler"] == "stopped"
    assert body["pending_automations"] == 0


@pytest.mark.asyncio
async def test_triggers_are_rate_limited_per_caller(worker_client, monkeypatch):
    async def _redact():
        return {"redacted": 0}

    monkeypatch.setattr(scheduled, "run_redact_services", _redact)

    statuses = [
        (await worker_client.post("/internal/scheduled/redact-services", headers=HEADERS)).status_code
        for _ in range(6)
    ]

    assert statuses == [200] * 5 + [429]
