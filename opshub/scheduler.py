"""
Cron scheduler for recurring jobs.

Expressions have 5 fields (minute hour day-of-month month day-of-week) or 6
with a leading seconds field. Each field accepts `*`, `*/n`, `a`, `a-b`,
`a-b/n` and comma lists. Day-of-week runs 0-6 from Sunday; 7 is also Sunday.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from opshub.core.config import settings
from opshub.jobs import scheduled
from opshub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# (min, max) per field, seconds first
_FIELD_RANGES = ((0, 59), (0, 59), (0, 23), (1, 31), (1, 12), (0, 7))
_FIELD_NAMES = ("second", "minute", "hour", "day of month", "month", "day of week")


class CronParseError(ValueError):
    pass


def _parse_field(expr: str, index: int) -> frozenset[int]:
    low, high = _FIELD_RANGES[index]
    values: set[int] = set()
    for part in expr.split(","):
        if not part:
            raise CronParseError(f"Empty {_FIELD_NAMES[index]} entry")
        base, _, step_text = part.partition("/")
        step = 1
        if step_text:
            if not step_text.isdigit() or int(step_text) == 0:
                raise CronParseError(f"Invalid step '{step_text}' in {_FIELD_NAMES[index]}")
            step = int(step_text)
        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_text, _, end_text = base.partition("-")
            if not start_text.isdigit() or not end_text.isdigit():
                raise CronParseError(f"Invalid range '{base}' in {_FIELD_NAMES[index]}")
            start, end = int(start_text), int(end_text)
        elif base.isdigit():
            start = int(base)
            end = high if step_text else start
        else:
            raise CronParseError(f"Invalid value '{base}' in {_FIELD_NAMES[index]}")
        if start < low or end > high or start > end:
            raise CronParseError(f"{_FIELD_NAMES[index]} out of range: '{part}'")
        values.update(range(start, end + 1, step))
    if index == 5 and 7 in values:
        values.discard(7)
        values.add(0)
    return frozenset(values)


class CronExpression:
    """Parsed cron expression; `matches` tests one wall-clock second."""

    def __init__(self, expression: str):
        parts = expression.split()
        if len(parts) == 5:
            parts = ["0", *parts]
        elif len(parts) != 6:
            raise CronParseError(f"Expected 5 or 6 fields, got {len(parts)}: '{expression}'")
        self.expression = expression
        fields = [_parse_field(part, index) for index, part in enumerate(parts)]
        self.seconds, self.minutes, self.hours, self.days, self.months, self.weekdays = fields
        self._dom_any = parts[3] == "*"
        self._dow_any = parts[5] == "*"

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"

    def matches(self, moment: datetime) -> bool:
        if (
            moment.second not in self.seconds
            or moment.minute not in self.minutes
            or moment.hour not in self.hours
            or moment.month not in self.months
        ):
            return False
        # Python: Monday=0; cron: Sunday=0
        weekday = (moment.weekday() + 1) % 7
        day_ok = moment.day in self.days
        weekday_ok = weekday in self.weekdays
        if self._dom_any or self._dow_any:
            return day_ok and weekday_ok
        return day_ok or weekday_ok


@dataclass
class ScheduledJob:
    name: str
    cron: CronExpression
    func: Callable[[], Awaitable[object]]
    tz: ZoneInfo | timezone = timezone.utc
    last_run: datetime | None = field(default=None, init=False)

    def is_due(self, now: datetime) -> bool:
        local = now.astimezone(self.tz)
        return self.cron.matches(local)


class Scheduler:
    """
    Ticks once per second and starts due jobs.

    A job runs at most once per matching second and never overlaps itself;
    a tick that finds it still running skips it. Job errors are logged.
    """

    def __init__(self, jobs: list[ScheduledJob], *, tick_seconds: float = 1.0):
        self.jobs = jobs
        self.tick_seconds = tick_seconds
        self._running: dict[str, asyncio.Task] = {}

    @property
    def running(self) -> list[str]:
        return [name for name, task in self._running.items() if not task.done()]

    async def _run_job(self, job: ScheduledJob) -> None:
        try:
            await job.func()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled job %s failed", job.name)

    def run_due(self, now: datetime) -> list[str]:
        """Start every job due at `now` (truncated to the second)."""
        now = now.replace(microsecond=0)
        started = []
        for job in self.jobs:
            if job.last_run == now or not job.is_due(now):
                continue
            task = self._running.get(job.name)
            if task is not None and not task.done():
                logger.info("Skipping %s: previous run still in progress", job.name)
                continue
            job.last_run = now
            self._running[job.name] = asyncio.create_task(self._run_job(job), name=f"scheduler:{job.name}")
            started.append(job.name)
        return started

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info("Scheduler started with %s job(s)", len(self.jobs))
        try:
            while not stop_event.is_set():
                self.run_due(utcnow())
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=self._sleep_for())
        finally:
            await self.shutdown()
            logger.info("Scheduler stopped")

    def _sleep_for(self) -> float:
        if self.tick_seconds != 1.0:
            return self.tick_seconds
        now = utcnow()
        next_second = now.replace(microsecond=0) + timedelta(seconds=1)
        return max(0.01, (next_second - now).total_seconds())

    async def shutdown(self) -> None:
        """Cancel in-flight jobs and wait for their cleanup."""
        tasks = [task for task in self._running.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._running.clear()


def build_default_jobs() -> list[ScheduledJob]:
    local_tz = settings.operational_tz
    return [
        ScheduledJob("calls-sync", CronExpression(settings.CTM_SYNC_CRON), scheduled.run_calls_sync),
        ScheduledJob("form-jobs", CronExpression("*/30 * * * * *"), scheduled.run_form_jobs),
        ScheduledJob("task-due-dates", CronExpression("0 * * * *"), scheduled.run_due_date_automations),
        ScheduledJob(
            "purge-archived-tasks",
            CronExpression("20 2 * * *"),
            scheduled.run_purge_archived_tasks,
            tz=local_tz,
        ),
        ScheduledJob(
            "redact-services",
            CronExpression("0 2 * * *"),
            scheduled.run_redact_services,
            tz=local_tz,
        ),
    ]
