"""AI provider abstraction layer.

The call classifier only needs `generate(prompt, system_prompt, ...)`; the
provider class hides the chat-completions wire format.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

import httpx

from opshub.core.config import settings
from opshub.services.http_service import request_with_retries

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
_CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*\n?")


class AIProviderError(Exception):
    """Raised when the AI provider is unavailable or returns nothing usable."""

    pass


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user', 'assistant'
    content: str


@dataclass
class ChatResponse:
    """Response from an AI provider."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model: str


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> ChatResponse:
        """Send a chat completion request."""
        pass


class OpenAIProvider(AIProvider):
    """OpenAI API provider."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = OPENAI_BASE_URL
        self.timeout = timeout
        self._transport = transport

    async def chat(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 800,
    ) -> ChatResponse:
        model = model or self.default_model

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:

            async def request_fn() -> httpx.Response:
                return await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": model,
                        "messages": [{"role": m.role, "content": m.content} for m in messages],
                        "temperature": temperature,
                        "max_tokens": max_tokens,
                    },
                )

            try:
                response = await request_with_retries(request_fn, label="OpenAI chat")
            except httpx.RequestError as exc:
                raise AIProviderError(f"AI request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise AIProviderError(f"AI request failed with status {response.status_code}")

        data = response.json()
        choices = data.get("choices") or []
        content = ""
        if choices:
            content = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage", {})
        return ChatResponse(
            content=content,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            model=model,
        )


def strip_code_fences(text: str) -> str:
    output = (text or "").strip()
    if output.startswith("```"):
        output = _CODE_FENCE_RE.sub("", output).replace("```", "").strip()
    return output


def get_ai_provider() -> AIProvider | None:
    """Configured provider, or None when no API key is set."""
    if not settings.OPENAI_API_KEY:
        return None
    return OpenAIProvider(
        settings.OPENAI_API_KEY,
        default_model=settings.OPENAI_MODEL,
        timeout=settings.AI_TIMEOUT_SECONDS,
    )


async def generate(
    prompt: str,
    *,
    system_prompt: str = "You are a helpful assistant.",
    temperature: float = 0.7,
    max_tokens: int = 800,
    model: str | None = None,
    provider: AIProvider | None = None,
) -> str:
    """
    Single-turn completion returning plain text.

    Raises AIProviderError when unconfigured, on transport failure or when
    the model returns an empty message. Markdown code fences are stripped.
    """
    if not prompt:
        raise AIProviderError("Prompt is required for AI generation")
    provider = provider or get_ai_provider()
    if provider is None:
        raise AIProviderError("OPENAI_API_KEY is not configured")

    response = await provider.chat(
        [ChatMessage(role="system", content=system_prompt), ChatMessage(role="user", content=prompt)],
        model=model,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    if not response.content:
        raise AIProviderError("AI response was empty")
    return strip_code_fences(response.content)
