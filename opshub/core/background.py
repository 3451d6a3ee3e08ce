"""Bounded pool for detached background work."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

logger = logging.getLogger(__name__)


class TaskLimiter:
    """
    Throttle detached tasks and cancel them on shutdown.

    `submit` waits for a free slot, so producers feel back-pressure once
    `max_pending` tasks are in flight. Task failures are logged, never raised.
    """

    def __init__(self, *, name: str, max_pending: int) -> None:
        if max_pending < 1:
            raise ValueError("max_pending must be >= 1")
        self._name = name
        self._max_pending = max_pending
        self._semaphore: asyncio.Semaphore | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def _get_semaphore(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._loop is not loop:
            # Semaphores bind to one loop; module-level limiters outlive loops in tests/CLI.
            self._semaphore = asyncio.Semaphore(self._max_pending)
            self._loop = loop
            self._tasks = {task for task in self._tasks if not task.done()}
        return self._semaphore

    async def submit(self, coro: Awaitable[None]) -> asyncio.Task[None]:
        """Schedule `coro` once a slot is available."""
        semaphore = self._get_semaphore()
        await semaphore.acquire()

        async def _runner() -> None:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background task failed in %s", self._name)
            finally:
                semaphore.release()

        task = asyncio.create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_pending(self) -> None:
        """Cancel all running tasks and wait for their completion."""
        if not self._tasks:
            return

        for task in list(self._tasks):
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
