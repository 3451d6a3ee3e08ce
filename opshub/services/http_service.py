"""HTTP helpers with retry/backoff for provider adapters."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


def is_retryable_status(status_code: int) -> bool:
    """Transient upstream statuses (rate limit, 5xx)."""
    return status_code == 429 or status_code >= 500


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float) -> float:
    """Capped exponential delay with up to 50% jitter."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: frozenset[int] | set[int] | None = None,
    label: str = "HTTP request",
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Network errors are re-raised after the last attempt; retryable statuses
    return the last response so the caller can map it to its own error type.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            logger.warning("%s failed (%s), retrying", label, type(exc).__name__)
            if delay:
                await asyncio.sleep(delay)
            continue

        if response.status_code in statuses and attempt < max_attempts - 1:
            delay = backoff_delay(attempt, base_delay=base_delay, max_delay=max_delay)
            logger.warning("%s returned %s, retrying", label, response.status_code)
            if delay:
                await asyncio.sleep(delay)
            continue

        return response

    return response
