"""Bridge from sync service code (engine runs, CLI) to async provider calls."""

from __future__ import annotations

from typing import Awaitable, TypeVar

import anyio
import anyio.from_thread

T = TypeVar("T")


def run_async(awaitable: Awaitable[T], *, timeout: float | None = None) -> T:
    """
    Await `awaitable` from synchronous code and return its result.

    Inside an anyio worker thread the call is sent back to the owning event
    loop; with no loop anywhere (CLI, sync tests) a fresh one is started.
    Calling this on an event-loop thread is a bug and raises RuntimeError.
    """

    async def _bounded() -> T:
        with anyio.fail_after(timeout):
            return await awaitable

    try:
        return anyio.from_thread.run(_bounded)
    except RuntimeError:
        # Not an anyio worker thread.
        pass
    try:
        anyio.get_current_task()
    except RuntimeError:
        return anyio.run(_bounded)
    raise RuntimeError("run_async() called on an event-loop thread; await the coroutine instead")
