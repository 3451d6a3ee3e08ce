"""Tests for the CallTrackingMetrics HTTP adapter."""

import base64
import json
from datetime import date, datetime, timezone

import httpx
import pytest

from opshub.services.ctm_client import (
    CallProviderError,
    CallProviderNotConfigured,
    CTMClient,
    CTMCredentials,
    extract_calls,
)

CREDENTIALS = CTMCredentials("12345", "key-abc", "secret-xyz")


def _client(handler, **kwargs) -> CTMClient:
    return CTMClient(
        CREDENTIALS,
        base_url="https://ctm.test",
        transport=httpx.MockTransport(handler),
        max_attempts=1,
        **kwargs,
    )


def test_client_requires_credentials():
    with pytest.raises(CallProviderNotConfigured):
        CTMClient(CTMCredentials("12345", None, "secret"))


def test_extract_calls_accepts_known_shapes():
    assert extract_calls({"data": {"calls": [{"id": 1}]}}) == [{"id": 1}]
    assert extract_calls({"calls": [{"id": 2}]}) == [{"id": 2}]
    assert extract_calls({"data": [{"id": 3}]}) == [{"id": 3}]
    assert extract_calls({"unexpected": True}) == []
    assert extract_calls(["not", "a", "dict"]) == []


@pytest.mark.asyncio
async def test_fetch_calls_pages_until_short_page():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        page = int(request.url.params["page"])
        pages = {
            1: [{"id": "A", "unix_time": 1767225600}, {"id": "B", "unix_time": 1767229200}],
            2: [{"id": "C", "unix_time": 1767218400}],
        }
        return httpx.Response(200, json={"calls": pages.get(page, [])})

    result = await _client(handler).fetch_calls(
        start_date=date(2025, 12, 31), end_date=date(2026, 1, 2), per_page=2
    )

    assert [call["id"] for call in result.calls] == ["A", "B", "C"]
    assert result.pages_processed == 2
    assert result.latest_timestamp == datetime(2026, 1, 1, 1, 0, tzinfo=timezone.utc)

    first = seen[0]
    assert first.url.path == "/api/v1/accounts/12345/calls"
    assert first.url.params["order"] == "desc"
    assert first.url.params["start_date"] == "2025-12-31"
    assert first.url.params["end_date"] == "2026-01-02"
    expected_auth = "Basic " + base64.b64encode(b"key-abc:secret-xyz").decode()
    assert first.headers["Authorization"] == expected_auth


@pytest.mark.asyncio
async def test_fetch_calls_stops_on_empty_first_page():
    result = await _client(lambda request: httpx.Response(200, json={"data": {"calls": []}})).fetch_calls(
        start_date=date(2026, 1, 1), end_date=date(2026, 1, 2)
    )
    assert result.calls == []
    assert result.latest_timestamp is None
    assert result.pages_processed == 1


@pytest.mark.asyncio
async def test_fetch_calls_respects_max_pages():
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        return httpx.Response(200, json={"calls": [{"id": f"{page}-a"}, {"id": f"{page}-b"}]})

    result = await _client(handler).fetch_calls(
        start_date=date(2026, 1, 1), end_date=date(2026, 1, 2), per_page=2, max_pages=3
    )
    assert len(result.calls) == 6
    assert result.pages_processed == 3


@pytest.mark.asyncio
async def test_fetch_calls_page_maps_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad credentials"})

    with pytest.raises(CallProviderError) as exc_info:
        await _client(handler).fetch_calls_page(
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 2), page=1
        )
    assert exc_info.value.status == 401
    assert exc_info.value.retryable is False
    assert "bad credentials" in str(exc_info.value)


@pytest.mark.asyncio
async def test_fetch_calls_page_server_error_is_retryable():
    with pytest.raises(CallProviderError) as exc_info:
        await _client(lambda request: httpx.Response(503)).fetch_calls_page(
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 2), page=1
        )
    assert exc_info.value.status == 503
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_fetch_calls_page_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CallProviderError) as exc_info:
        await _client(handler).fetch_calls_page(
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 2), page=1
        )
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_fetch_calls_fails_on_non_json_page():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return httpx.Response(200, json={"calls": [{"id": "A"}, {"id": "B"}]})
        return httpx.Response(200, text="<html>gateway hiccup</html>")

    with pytest.raises(CallProviderError) as exc_info:
        await _client(handler).fetch_calls(
            start_date=date(2026, 1, 1), end_date=date(2026, 1, 2), per_page=2
        )
    assert exc_info.value.status == 200
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_post_sale_sends_score_payload():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "success"})

    ack = await _client(handler).post_sale("C9", score=3, conversion=1, value=0, sale_date=date(2026, 1, 5))

    assert ack == {"status": "success"}
    assert captured["path"] == "/api/v1/accounts/12345/calls/C9/sale"
    assert captured["body"] == {"score": 3, "conversion": 1, "value": 0, "sale_date": "2026-01-05"}


@pytest.mark.asyncio
async def test_post_sale_rejects_missing_call_id():
    with pytest.raises(CallProviderError) as exc_info:
        await _client(lambda request: httpx.Response(200)).post_sale("")
    assert exc_info.value.retryable is False


@pytest.mark.asyncio
async def test_post_sale_raises_on_rejection():
    with pytest.raises(CallProviderError) as exc_info:
        await _client(lambda request: httpx.Response(422, json={"error": "invalid score"})).post_sale("C1")
    assert exc_info.value.status == 422
