"""Detached dispatch of task item events to the automation engine."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import Callable
from uuid import UUID

import anyio
from sqlalchemy.orm import Session

from opshub.core.background import TaskLimiter
from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import ItemChangeOrigin
from opshub.db.session import SessionLocal

logger = logging.getLogger(__name__)

automation_limiter = TaskLimiter(name="task-automations", max_pending=settings.BACKGROUND_MAX_PENDING)

# Swapped in tests to bind engine runs to the test database.
session_factory: Callable[[], Session] = SessionLocal

# Keeps submit tasks referenced until the limiter has taken them over.
_pending_dispatches: set[asyncio.Task] = set()


def _run_guarded(fn: Callable[[Session], object], item_id: UUID) -> None:
    with session_factory() as db:
        try:
            fn(db)
        except Exception:
            db.rollback()
            logger.exception(
                "Task automation run failed",
                extra=build_log_context(item_id=item_id, component="task_automations"),
            )


def _dispatch(fn: Callable[[Session], object], item_id: UUID) -> asyncio.Task | None:
    """
    Run `fn(db)` off the caller's path.

    Inside an event loop the run is queued on the bounded limiter and
    executes in a worker thread; without a loop (CLI, sync callers) it runs
    inline. Either way failures are logged, never raised.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _run_guarded(fn, item_id)
        return None

    async def _submit() -> None:
        await automation_limiter.submit(
            anyio.to_thread.run_sync(partial(_run_guarded, fn, item_id))
        )

    task = loop.create_task(_submit())
    _pending_dispatches.add(task)
    task.add_done_callback(_pending_dispatches.discard)
    return task


def dispatch_item_changed(
    before,
    after,
    actor_user_id: UUID | None,
    *,
    origin: ItemChangeOrigin = ItemChangeOrigin.USER,
) -> asyncio.Task | None:
    """Hand a status change to the engine unless the engine itself wrote it."""
    if origin == ItemChangeOrigin.AUTOMATION:
        return None
    if before is None or after is None or before.status == after.status:
        return None

    def _run(db: Session) -> None:
        from opshub.services.task_automation_engine import TaskAutomationEngine

        TaskAutomationEngine().on_item_changed(db, before, after, actor_user_id)

    return _dispatch(_run, after.id)


def dispatch_assignee_added(
    item_id: UUID, assignee_user_id: UUID, actor_user_id: UUID | None
) -> asyncio.Task | None:
    def _run(db: Session) -> None:
        from opshub.services.task_automation_engine import TaskAutomationEngine

        TaskAutomationEngine().on_assignee_added(db, item_id, assignee_user_id, actor_user_id)

    return _dispatch(_run, item_id)
