"""HTTP service entrypoint for the background worker (health + internal triggers)."""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from opshub.core.config import settings
from opshub.core.rate_limit import limiter
from opshub.routers import internal_router
from opshub.services import task_events
from opshub.worker import configure_logging, worker_loop

app = FastAPI(title="opshub worker", version=settings.VERSION)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.include_router(internal_router)

_worker_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "version": settings.VERSION,
        "scheduler": "running" if _worker_task and not _worker_task.done() else "stopped",
        "pending_automations": task_events.automation_limiter.pending,
    }


@app.on_event("startup")
async def _startup() -> None:
    if os.getenv("OPSHUB_DISABLE_SCHEDULER") == "1":
        return
    global _worker_task, _stop_event
    _stop_event = asyncio.Event()
    _worker_task = asyncio.create_task(worker_loop(_stop_event))


@app.on_event("shutdown")
async def _shutdown() -> None:
    if _stop_event:
        _stop_event.set()
    if _worker_task:
        with contextlib.suppress(asyncio.CancelledError):
            await _worker_task


def main() -> None:
    import uvicorn

    configure_logging()
    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    # nosec B104 - container platforms require binding to all interfaces.
    uvicorn.run("opshub.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
