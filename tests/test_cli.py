"""Tests for the admin CLI."""

import json
import uuid

from click.testing import CliRunner

from opshub.cli import cli
from opshub.jobs import scheduled


def test_full_sync_requires_user_id():
    result = CliRunner().invoke(cli, ["sync-calls", "--full"])

    assert result.exit_code == 2
    assert "--full requires --user-id" in result.output


def test_sync_calls_for_one_client(monkeypatch):
    seen = {}

    async def _fake(user_id=None, *, full_sync=False):
        seen["args"] = (user_id, full_sync)
        return {"clients": 1, "reports": {str(user_id): {"ok": True}}}

    monkeypatch.setattr(scheduled, "run_calls_sync", _fake)
    user_id = uuid.uuid4()

    result = CliRunner().invoke(cli, ["sync-calls", "--user-id", str(user_id), "--full"])

    assert result.exit_code == 0, result.output
    assert seen["args"] == (user_id, True)
    assert json.loads(result.output)["clients"] == 1


def test_process_form_jobs_prints_counts(monkeypatch):
    async def _fake():
        return {"processed": 0, "completed": 0, "failed": 0}

    monkeypatch.setattr(scheduled, "run_form_jobs", _fake)

    result = CliRunner().invoke(cli, ["process-form-jobs"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"processed": 0, "completed": 0, "failed": 0}


def test_retention_commands(monkeypatch):
    async def _purge():
        return {"deleted": 2}

    async def _redact():
        return {"redacted": 0}

    monkeypatch.setattr(scheduled, "run_purge_archived_tasks", _purge)
    monkeypatch.setattr(scheduled, "run_redact_services", _redact)

    runner = CliRunner()
    assert json.loads(runner.invoke(cli, ["purge-archived-tasks"]).output) == {"deleted": 2}
    assert json.loads(runner.invoke(cli, ["redact-services"]).output) == {"redacted": 0}
