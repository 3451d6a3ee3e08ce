"""Outbound email via the Mailgun HTTP API."""

from __future__ import annotations

import html as html_module
import logging

import httpx

from opshub.core.config import settings
from opshub.jobs.utils import mask_email
from opshub.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

MAILGUN_MAX_ATTEMPTS = 3
MAILGUN_RETRY_BASE_DELAY = 0.5
MAILGUN_RETRY_MAX_DELAY = 4.0


class EmailNotConfiguredError(Exception):
    """Raised when no email provider is configured."""

    pass


class EmailSendError(Exception):
    """Raised when the provider rejects or fails a send."""

    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


def text_to_html(text: str) -> str:
    """Minimal HTML rendering of a plain-text body."""
    paragraphs = [p for p in (text or "").split("\n\n") if p.strip()]
    rendered = [
        "<p>" + "<br>".join(html_module.escape(line) for line in p.splitlines()) + "</p>"
        for p in paragraphs
    ]
    return "<html><body>" + "".join(rendered) + "</body></html>"


class MailgunEmailSender:
    """Mailgun messages API adapter."""

    def __init__(
        self,
        api_key: str,
        domain: str,
        *,
        api_base: str = "https://api.mailgun.net/v3",
        default_from: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not api_key or not domain:
            raise EmailNotConfiguredError("Mailgun is not configured")
        self.api_key = api_key
        self.domain = domain
        self.api_base = api_base.rstrip("/")
        self.default_from = default_from or f"Operations Hub <webforms@{domain}>"
        self.timeout = timeout
        self._transport = transport

    async def send(
        self,
        to: str | list[str],
        subject: str,
        text: str,
        html: str | None = None,
        from_email: str | None = None,
    ) -> dict:
        """Send one message. Returns {"id": <provider message id>}."""
        recipients = [to] if isinstance(to, str) else list(to)
        if not recipients:
            raise EmailSendError("Recipient is required")
        if not subject:
            raise EmailSendError("Subject is required")
        if not text and not html:
            raise EmailSendError("Either text or html content is required")

        data = {
            "from": from_email or self.default_from,
            "to": recipients,
            "subject": subject,
            "text": text or "",
            "html": html or text_to_html(text),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(
                        f"{self.api_base}/{self.domain}/messages",
                        auth=("api", self.api_key),
                        data=data,
                    )

                response = await request_with_retries(
                    request_fn,
                    max_attempts=MAILGUN_MAX_ATTEMPTS,
                    base_delay=MAILGUN_RETRY_BASE_DELAY,
                    max_delay=MAILGUN_RETRY_MAX_DELAY,
                    label="Mailgun send",
                )
        except httpx.TimeoutException as exc:
            raise EmailSendError("Email send timed out") from exc
        except httpx.RequestError as exc:
            raise EmailSendError(f"Email send failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            logger.warning(
                "Mailgun rejected message to %s with status %s",
                ", ".join(mask_email(r) for r in recipients),
                response.status_code,
            )
            raise EmailSendError(
                f"Email send failed with status {response.status_code}",
                status=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        return {"id": body.get("id") if isinstance(body, dict) else None}


def is_configured() -> bool:
    return bool(settings.MAILGUN_API_KEY and settings.mailgun_domain)


def get_email_sender() -> MailgunEmailSender | None:
    """Configured sender, or None when Mailgun settings are absent."""
    if not is_configured():
        return None
    return MailgunEmailSender(
        settings.MAILGUN_API_KEY,
        settings.mailgun_domain,
        api_base=settings.MAILGUN_API_BASE,
        default_from=settings.MAILGUN_DEFAULT_FROM or None,
        timeout=settings.EMAIL_TIMEOUT_SECONDS,
    )
