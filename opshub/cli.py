"""CLI tools for operations hub administration."""

import asyncio
import json
import logging
from uuid import UUID

import click

from opshub.jobs import scheduled


def _echo_result(result: dict) -> None:
    click.echo(json.dumps(result, indent=2, default=str))


@click.group()
@click.option("--verbose", is_flag=True, help="Log at INFO level")
def cli(verbose: bool):
    """Operations hub CLI tools."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@cli.command("sync-calls")
@click.option("--user-id", type=click.UUID, default=None, help="Client user id (default: all clients)")
@click.option("--full", "full_sync", is_flag=True, help="Ignore the cursor and re-fetch the full window")
def sync_calls(user_id: UUID | None, full_sync: bool):
    """
    Pull calls from CallTrackingMetrics.

    Example:
        opshub sync-calls --user-id 3f0c... --full
    """
    if full_sync and user_id is None:
        raise click.UsageError("--full requires --user-id")
    _echo_result(asyncio.run(scheduled.run_calls_sync(user_id, full_sync=full_sync)))


@cli.command("process-form-jobs")
def process_form_jobs():
    """Run one form submission job batch."""
    _echo_result(asyncio.run(scheduled.run_form_jobs()))


@cli.command("run-due-date-automations")
def run_due_date_automations():
    """Evaluate due-date task automations now."""
    _echo_result(asyncio.run(scheduled.run_due_date_automations()))


@cli.command("purge-archived-tasks")
def purge_archived_tasks():
    """Delete task items archived beyond the retention window."""
    _echo_result(asyncio.run(scheduled.run_purge_archived_tasks()))


@cli.command("redact-services")
def redact_services():
    """Stamp redaction on client services older than the redaction window."""
    _echo_result(asyncio.run(scheduled.run_redact_services()))


@cli.command("run-scheduler")
def run_scheduler():
    """Run the cron scheduler in the foreground."""
    from opshub import worker

    worker.main()


@cli.command("migrate")
def migrate():
    """Upgrade the database schema to head."""
    from opshub.core.migrations import ensure_migrations
    from opshub.db.session import engine

    status = ensure_migrations(engine, auto_migrate=True)
    click.echo(f"✓ Database at {', '.join(status.current_heads) or 'empty'}")


if __name__ == "__main__":
    cli()
