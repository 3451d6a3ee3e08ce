"""
Background worker: runs the cron scheduler in-process.

Usage:
    python -m opshub.worker

Runs call sync, form job batches, due-date automations and retention jobs
on their cadences until SIGINT/SIGTERM.
"""

import asyncio
import logging
import signal

from opshub.core.config import settings
from opshub.core.migrations import ensure_migrations
from opshub.db.session import engine
from opshub.scheduler import Scheduler, build_default_jobs
from opshub.services import task_events

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def worker_loop(stop_event: asyncio.Event | None = None) -> None:
    """Run the scheduler until `stop_event` is set or the task is cancelled."""
    stop_event = stop_event or asyncio.Event()
    logger.info("Worker starting (env=%s, version=%s)", settings.ENV, settings.VERSION)
    if settings.AUTO_MIGRATE:
        ensure_migrations(engine, auto_migrate=True)

    scheduler = Scheduler(build_default_jobs())
    try:
        await scheduler.run(stop_event)
    finally:
        await task_events.automation_limiter.cancel_pending()
        logger.info("Worker stopped")


async def _main() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            pass
    await worker_loop(stop_event)


def main() -> None:
    configure_logging()
    asyncio.run(_main())


if __name__ == "__main__":
    main()
