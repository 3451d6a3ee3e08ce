"""CallTrackingMetrics API client.

Reads paginated call lists and posts sale/score updates back to the
provider. Credentials are passed per call and never cached.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from urllib.parse import quote

import httpx

from opshub.core.config import settings
from opshub.services.call_records import parse_call_timestamp
from opshub.services.http_service import is_retryable_status, request_with_retries

logger = logging.getLogger(__name__)

CTM_MAX_ATTEMPTS = 3
CTM_RETRY_BASE_DELAY = 0.5
CTM_RETRY_MAX_DELAY = 4.0
PAGE_SAFETY_LIMIT = 1000


class CallProviderError(Exception):
    """Raised when the call provider request fails."""

    def __init__(self, message: str, *, status: int | None = None, retryable: bool = True):
        super().__init__(message)
        self.status = status
        self.retryable = retryable


class CallProviderNotConfigured(CallProviderError):
    """Raised when a client has no call provider credentials."""

    def __init__(self, message: str = "CallTrackingMetrics credentials not configured."):
        super().__init__(message, retryable=False)


@dataclass(frozen=True)
class CTMCredentials:
    account_id: str | None
    api_key: str | None
    api_secret: str | None

    @property
    def is_configured(self) -> bool:
        return bool(self.account_id and self.api_key and self.api_secret)

    @classmethod
    def from_profile(cls, profile: Any) -> "CTMCredentials":
        if profile is None:
            return cls(None, None, None)
        return cls(profile.ctm_account_id, profile.ctm_api_key, profile.ctm_api_secret)

    def auth_header(self) -> str:
        token = base64.b64encode(f"{self.api_key}:{self.api_secret}".encode()).decode()
        return f"Basic {token}"


@dataclass
class FetchResult:
    calls: list[dict] = field(default_factory=list)
    latest_timestamp: datetime | None = None
    pages_processed: int = 0
    start_date: date | None = None
    end_date: date | None = None


def extract_calls(body: Any) -> list[dict]:
    """Calls list from any of the response shapes `data.calls`, `calls`, `data`."""
    if not isinstance(body, dict):
        return []
    data = body.get("data")
    if isinstance(data, dict) and isinstance(data.get("calls"), list):
        return data["calls"]
    if isinstance(body.get("calls"), list):
        return body["calls"]
    if isinstance(data, list):
        return data
    return []


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "request failed"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or response.reason_phrase)
    return response.reason_phrase or "request failed"


class CTMClient:
    """HTTP adapter for one account's calls endpoints."""

    def __init__(
        self,
        credentials: CTMCredentials,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        sale_timeout: float | None = None,
        max_attempts: int = CTM_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not credentials.is_configured:
            raise CallProviderNotConfigured()
        self.credentials = credentials
        self.base_url = (base_url or settings.CTM_API_BASE).rstrip("/")
        self.timeout = timeout or settings.CTM_REQUEST_TIMEOUT_SECONDS
        self.sale_timeout = sale_timeout or settings.CTM_SALE_TIMEOUT_SECONDS
        self.max_attempts = max_attempts
        self._transport = transport

    def _calls_url(self) -> str:
        return f"{self.base_url}/api/v1/accounts/{quote(str(self.credentials.account_id), safe='')}/calls"

    async def fetch_calls_page(
        self,
        *,
        start_date: date,
        end_date: date,
        page: int,
        per_page: int = 100,
        client: httpx.AsyncClient | None = None,
    ) -> list[dict]:
        """One page of calls, newest first. Raises CallProviderError."""
        params = {
            "per_page": per_page,
            "page": page,
            "order": "desc",
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        headers = {
            "Authorization": self.credentials.auth_header(),
            "Accept": "application/json",
        }

        async def _fetch(http: httpx.AsyncClient) -> httpx.Response:
            async def request_fn() -> httpx.Response:
                return await http.get(self._calls_url(), params=params, headers=headers)

            return await request_with_retries(
                request_fn,
                max_attempts=self.max_attempts,
                base_delay=CTM_RETRY_BASE_DELAY,
                max_delay=CTM_RETRY_MAX_DELAY,
                label="CTM calls fetch",
            )

        try:
            if client is not None:
                response = await _fetch(client)
            else:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as http:
                    response = await _fetch(http)
        except httpx.TimeoutException as exc:
            raise CallProviderError("CTM request timed out", retryable=True) from exc
        except httpx.RequestError as exc:
            raise CallProviderError(
                f"CTM request failed: {type(exc).__name__}", retryable=True
            ) from exc

        if response.status_code >= 400:
            raise CallProviderError(
                f"CTM API Error ({response.status_code}): {_error_message(response)}",
                status=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise CallProviderError(
                f"CTM returned a non-JSON calls page (page {page})",
                status=response.status_code,
                retryable=True,
            ) from exc
        return extract_calls(body)

    async def fetch_calls(
        self,
        *,
        start_date: date,
        end_date: date,
        per_page: int = 100,
        max_pages: int = 0,
    ) -> FetchResult:
        """
        Fetch every page in the window, in order, until a short page.

        `max_pages=0` means no limit beyond the safety cap.
        """
        result = FetchResult(start_date=start_date, end_date=end_date)
        page_limit = max_pages if max_pages > 0 else PAGE_SAFETY_LIMIT
        page = 1

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http:
            while page <= page_limit:
                calls = await self.fetch_calls_page(
                    start_date=start_date,
                    end_date=end_date,
                    page=page,
                    per_page=per_page,
                    client=http,
                )
                result.pages_processed = page
                if not calls:
                    break
                for raw in calls:
                    started_at, _ = parse_call_timestamp(raw)
                    if started_at and (
                        result.latest_timestamp is None or started_at > result.latest_timestamp
                    ):
                        result.latest_timestamp = started_at
                result.calls.extend(calls)
                if len(calls) < per_page:
                    break
                page += 1

        return result

    async def post_sale(
        self,
        call_id: str,
        *,
        score: int = 5,
        conversion: int = 1,
        value: float = 0,
        sale_date: date | None = None,
    ) -> dict:
        """Post a sale/score for one call. Raises CallProviderError."""
        if not call_id:
            raise CallProviderError("Missing call ID for CTM sale posting.", retryable=False)

        url = f"{self._calls_url()}/{quote(str(call_id), safe='')}/sale"
        payload = {
            "score": score,
            "conversion": conversion,
            "value": value,
            "sale_date": (sale_date or date.today()).isoformat(),
        }
        headers = {
            "Authorization": self.credentials.auth_header(),
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.sale_timeout, transport=self._transport
            ) as http:

                async def request_fn() -> httpx.Response:
                    return await http.post(url, json=payload, headers=headers)

                response = await request_with_retries(
                    request_fn,
                    max_attempts=self.max_attempts,
                    base_delay=CTM_RETRY_BASE_DELAY,
                    max_delay=CTM_RETRY_MAX_DELAY,
                    label="CTM sale post",
                )
        except httpx.RequestError as exc:
            raise CallProviderError(
                f"CTM sale post failed: {type(exc).__name__}", retryable=True
            ) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(
                "Failed to post sale to CTM",
                extra={"call_id": str(call_id), "status": response.status_code},
            )
            raise CallProviderError(
                f"CTM API Error ({response.status_code}): {message}",
                status=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )
        try:
            return response.json()
        except ValueError:
            return {}
