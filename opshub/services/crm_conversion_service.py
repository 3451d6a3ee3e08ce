"""CRM conversion events for form submissions."""

from __future__ import annotations

import logging

import httpx

from opshub.core.config import settings
from opshub.jobs.utils import safe_url
from opshub.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

CONVERSION_TIMEOUT_SECONDS = 20.0
CONVERSION_MAX_ATTEMPTS = 3


class ConversionSendError(Exception):
    """Raised when the CRM endpoint fails or rejects a conversion."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


def is_conversion_enabled(form_settings: dict | None) -> bool:
    form_settings = form_settings or {}
    return bool(form_settings.get("ctm_enabled") and form_settings.get("ctm_conversion_action_id"))


async def send_conversion(
    payload: dict,
    form_settings: dict | None,
    *,
    webhook_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    """
    Post a conversion event.

    Missing configuration is a successful no-op: returns {"skipped": True}.
    Raises ConversionSendError on transport failure or a 4xx/5xx response.
    """
    if not is_conversion_enabled(form_settings):
        logger.info("CRM conversion skipped: form not configured")
        return {"skipped": True, "reason": "form_not_configured"}

    url = webhook_url or settings.CTM_CONVERSION_WEBHOOK_URL
    if not url:
        logger.info("CRM conversion skipped: no endpoint configured")
        return {"skipped": True, "reason": "endpoint_not_configured"}

    body = {**payload, "conversion_action_id": form_settings["ctm_conversion_action_id"]}
    try:
        async with httpx.AsyncClient(
            timeout=CONVERSION_TIMEOUT_SECONDS, transport=transport
        ) as client:

            async def request_fn() -> httpx.Response:
                return await client.post(url, json=body)

            response = await request_with_retries(
                request_fn,
                max_attempts=CONVERSION_MAX_ATTEMPTS,
                label="CRM conversion",
            )
    except httpx.RequestError as exc:
        raise ConversionSendError(f"Conversion send failed: {type(exc).__name__}") from exc

    if response.status_code >= 400:
        logger.warning(
            "CRM conversion rejected by %s with status %s", safe_url(url), response.status_code
        )
        raise ConversionSendError(
            f"Conversion send failed with status {response.status_code}",
            status=response.status_code,
        )
    return {"skipped": False, "status": response.status_code}
