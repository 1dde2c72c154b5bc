"""Completion-assessment providers - short single-turn HTTP completions."""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from turnkeeper.exceptions import (
    ProviderError,
    ProviderHttpError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from turnkeeper.logging import get_logger

log = get_logger(__name__)


# Assessment answers are a single word.
ASSESSMENT_MAX_TOKENS = 10


@dataclass(frozen=True)
class ProviderSpec:
    """Static facts about one assessment backend."""

    name: str
    model_prefix: str
    default_model: str
    default_base_url: str


PROVIDER_SPECS: dict[str, ProviderSpec] = {
    "anthropic": ProviderSpec(
        name="anthropic",
        model_prefix="claude",
        default_model="claude-haiku-4-5-20251001",
        default_base_url="https://api.anthropic.com",
    ),
    "openai": ProviderSpec(
        name="openai",
        model_prefix="gpt",
        default_model="gpt-4o-mini",
        default_base_url="https://api.openai.com",
    ),
    "gemini": ProviderSpec(
        name="gemini",
        model_prefix="gemini",
        default_model="gemini-2.0-flash",
        default_base_url="https://generativelanguage.googleapis.com",
    ),
}


@dataclass(frozen=True)
class ProviderConfig:
    """Resolved backend, credentials and model for one assessment call."""

    provider: str
    api_key: str
    base_url: str
    model: str


@dataclass(frozen=True)
class HttpRequest:
    url: str
    headers: dict[str, str]
    body: dict[str, Any]
    params: dict[str, str] | None = None


def _dig(data: Any, *path: str | int) -> Any:
    """Follow a key/index path, returning None at the first miss."""
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return None
            current = current[step]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(step)
    return current


class CompletionProvider(ABC):
    """Abstract base class for completion-assessment providers."""

    name: str = ""

    @abstractmethod
    async def call(self, config: ProviderConfig, prompt: str, timeout_ms: int) -> str:
        """Send one prompt and return the upper-cased, trimmed answer."""
        pass

    async def close(self) -> None:
        pass


class HttpCompletionProvider(CompletionProvider):
    """One HTTP completion call; subclasses only describe request and response shape."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self.client = client or httpx.AsyncClient(follow_redirects=True)

    @abstractmethod
    def build_request(self, config: ProviderConfig, prompt: str) -> HttpRequest:
        pass

    @abstractmethod
    def extract_text(self, data: Any) -> Any:
        pass

    async def call(self, config: ProviderConfig, prompt: str, timeout_ms: int) -> str:
        """Generate a short completion.

        Raises:
            ProviderTimeoutError: the call did not finish within timeout_ms
            ProviderHttpError: non-success HTTP status
            ProviderResponseError: body is not JSON
            ProviderError: any other transport failure
        """
        request = self.build_request(config, prompt)
        timeout_s = max(timeout_ms, 1) / 1000

        log.debug("Calling assessment provider", provider=self.name, model=config.model, timeout_ms=timeout_ms)
        try:
            response = await asyncio.wait_for(
                self.client.post(
                    request.url,
                    json=request.body,
                    headers=request.headers,
                    params=request.params,
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise ProviderTimeoutError(self.name, timeout_ms) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ProviderError(f"{self.name} HTTP error: {e}", provider=self.name) from e

        log.debug("Assessment provider response status", provider=self.name, status=response.status_code)

        if not response.is_success:
            raise ProviderHttpError(self.name, response.status_code, response.text[:200])

        try:
            data = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProviderResponseError(f"{self.name} response decode error: {e}", provider=self.name) from e

        text = self.extract_text(data)
        if not isinstance(text, str):
            return ""
        return text.strip().upper()

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class AnthropicProvider(HttpCompletionProvider):
    """Anthropic Messages API."""

    name = "anthropic"

    def build_request(self, config: ProviderConfig, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=f"{config.base_url.rstrip('/')}/v1/messages",
            headers={
                "Content-Type": "application/json",
                "x-api-key": config.api_key,
                "anthropic-version": "2023-06-01",
            },
            body={
                "model": config.model,
                "max_tokens": ASSESSMENT_MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    def extract_text(self, data: Any) -> Any:
        return _dig(data, "content", 0, "text")


class OpenAIProvider(HttpCompletionProvider):
    """OpenAI Chat Completions API."""

    name = "openai"

    def build_request(self, config: ProviderConfig, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=f"{config.base_url.rstrip('/')}/v1/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {config.api_key}",
            },
            body={
                "model": config.model,
                "max_tokens": ASSESSMENT_MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
        )

    def extract_text(self, data: Any) -> Any:
        return _dig(data, "choices", 0, "message", "content")


class GeminiProvider(HttpCompletionProvider):
    """Gemini generateContent API; the key travels as a query parameter."""

    name = "gemini"

    def build_request(self, config: ProviderConfig, prompt: str) -> HttpRequest:
        return HttpRequest(
            url=f"{config.base_url.rstrip('/')}/v1beta/models/{config.model}:generateContent",
            headers={"Content-Type": "application/json"},
            body={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {"maxOutputTokens": ASSESSMENT_MAX_TOKENS},
            },
            params={"key": config.api_key},
        )

    def extract_text(self, data: Any) -> Any:
        return _dig(data, "candidates", 0, "content", "parts", 0, "text")


_PROVIDER_CLASSES: dict[str, type[HttpCompletionProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def create_provider(provider: str, client: httpx.AsyncClient | None = None) -> CompletionProvider:
    """Create an assessment provider.

    Args:
        provider: Provider name (anthropic, openai, gemini)
        client: Optional shared httpx client

    Returns:
        Configured CompletionProvider instance
    """
    provider_cls = _PROVIDER_CLASSES.get(provider.strip().lower())
    if provider_cls is None:
        raise ValueError(f"Provider '{provider}' not supported. Use one of: {', '.join(_PROVIDER_CLASSES)}.")
    return provider_cls(client=client)


__all__ = [
    "ASSESSMENT_MAX_TOKENS",
    "AnthropicProvider",
    "CompletionProvider",
    "GeminiProvider",
    "HttpCompletionProvider",
    "OpenAIProvider",
    "PROVIDER_SPECS",
    "ProviderConfig",
    "ProviderSpec",
    "create_provider",
]
