"""Tests for retrying HTTP helpers and the Mailgun sender."""

from urllib.parse import parse_qs

import httpx
import pytest

from opshub.services import email_service, http_service


@pytest.mark.asyncio
async def test_request_with_retries_recovers_from_transient_status():
    statuses = iter([503, 200])

    async with httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(next(statuses)))
    ) as client:
        response = await http_service.request_with_retries(
            lambda: client.get("https://provider.test/ping"), base_delay=0
        )

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_request_with_retries_returns_last_retryable_response():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(429)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await http_service.request_with_retries(
            lambda: client.get("https://provider.test/ping"), max_attempts=3, base_delay=0
        )

    assert response.status_code == 429
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_request_with_retries_reraises_network_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(httpx.ConnectError):
            await http_service.request_with_retries(
                lambda: client.get("https://provider.test/ping"), max_attempts=2, base_delay=0
            )


def test_backoff_delay_is_capped():
    assert http_service.backoff_delay(10, base_delay=0.5, max_delay=4.0) <= 6.0
    assert http_service.backoff_delay(0, base_delay=0, max_delay=4.0) == 0
    assert http_service.is_retryable_status(429)
    assert http_service.is_retryable_status(502)
    assert not http_service.is_retryable_status(404)


def test_text_to_html_escapes_and_splits_paragraphs():
    html = email_service.text_to_html("Hello <b>team</b>\nline two\n\nSecond")
    assert html == (
        "<html><body><p>Hello &lt;b&gt;team&lt;/b&gt;<br>line two</p><p>Second</p></body></html>"
    )


def test_sender_requires_configuration():
    with pytest.raises(email_service.EmailNotConfiguredError):
        email_service.MailgunEmailSender("", "mg.example.com")
    assert email_service.get_email_sender() is None


@pytest.mark.asyncio
async def test_mailgun_send_posts_form():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"id": "<msg@mg.example.com>"})

    sender = email_service.MailgunEmailSender(
        "key-123",
        "mg.example.com",
        api_base="https://mailgun.test/v3",
        transport=httpx.MockTransport(handler),
    )
    result = await sender.send(["a@example.com", "b@example.com"], "New lead", "Name: Jane")

    assert result == {"id": "<msg@mg.example.com>"}
    assert captured["url"] == "https://mailgun.test/v3/mg.example.com/messages"
    assert captured["form"]["to"] == ["a@example.com", "b@example.com"]
    assert captured["form"]["from"] == ["Operations Hub <webforms@mg.example.com>"]
    assert captured["form"]["html"] == ["<html><body><p>Name: Jane</p></body></html>"]


@pytest.mark.asyncio
async def test_mailgun_rejection_raises_with_status():
    sender = email_service.MailgunEmailSender(
        "key-123",
        "mg.example.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"message": "bad"})),
    )

    with pytest.raises(email_service.EmailSendError) as exc_info:
        await sender.send("a@example.com", "Hi", "Body")
    assert exc_info.value.status == 400


@pytest.mark.asyncio
async def test_mailgun_send_validates_input():
    sender = email_service.MailgunEmailSender("key-123", "mg.example.com")

    with pytest.raises(email_service.EmailSendError, match="Recipient"):
        await sender.send([], "Hi", "Body")
    with pytest.raises(email_service.EmailSendError, match="Subject"):
        await sender.send("a@example.com", "", "Body")
