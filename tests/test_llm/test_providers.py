import asyncio
import json

import httpx
import pytest

from turnkeeper.exceptions import (
    ProviderError,
    ProviderHttpError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from turnkeeper.llm import (
    ASSESSMENT_MAX_TOKENS,
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    ProviderConfig,
    create_provider,
)


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class _Recorder:
    def __init__(self, status_code: int = 200, payload: object | None = None, text: str | None = None):
        self.status_code = status_code
        self.payload = payload
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status_code, text=self.text)
        return httpx.Response(self.status_code, json=self.payload)


@pytest.mark.asyncio
async def test_anthropic_request_shape_and_normalized_answer():
    recorder = _Recorder(payload={"content": [{"type": "text", "text": "  done \n"}]})
    provider = AnthropicProvider(client=_client(recorder))
    config = ProviderConfig("anthropic", "sk-ant", "https://api.anthropic.com/", "claude-haiku-4-5-20251001")

    answer = await provider.call(config, "is it done?", 1000)

    assert answer == "DONE"
    request = recorder.requests[0]
    assert str(request.url) == "https://api.anthropic.com/v1/messages"
    assert request.headers["x-api-key"] == "sk-ant"
    assert request.headers["anthropic-version"] == "2023-06-01"
    body = json.loads(request.content)
    assert body == {
        "model": "claude-haiku-4-5-20251001",
        "max_tokens": ASSESSMENT_MAX_TOKENS,
        "messages": [{"role": "user", "content": "is it done?"}],
    }
    await provider.close()


@pytest.mark.asyncio
async def test_openai_request_shape_and_normalized_answer():
    recorder = _Recorder(payload={"choices": [{"message": {"content": "not_done"}}]})
    provider = OpenAIProvider(client=_client(recorder))
    config = ProviderConfig("openai", "sk-oa", "https://api.openai.com", "gpt-4o-mini")

    answer = await provider.call(config, "prompt", 1000)

    assert answer == "NOT_DONE"
    request = recorder.requests[0]
    assert str(request.url) == "https://api.openai.com/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-oa"
    body = json.loads(request.content)
    assert body["max_tokens"] == 10
    assert body["model"] == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_gemini_sends_key_as_query_param():
    recorder = _Recorder(payload={"candidates": [{"content": {"parts": [{"text": "Done"}]}}]})
    provider = GeminiProvider(client=_client(recorder))
    config = ProviderConfig("gemini", "g-key", "https://generativelanguage.googleapis.com", "gemini-2.0-flash")

    answer = await provider.call(config, "prompt", 1000)

    assert answer == "DONE"
    request = recorder.requests[0]
    assert request.url.path == "/v1beta/models/gemini-2.0-flash:generateContent"
    assert request.url.params["key"] == "g-key"
    body = json.loads(request.content)
    assert body == {
        "contents": [{"parts": [{"text": "prompt"}]}],
        "generationConfig": {"maxOutputTokens": 10},
    }


@pytest.mark.asyncio
async def test_missing_text_field_yields_empty_string():
    provider = OpenAIProvider(client=_client(_Recorder(payload={"choices": []})))
    config = ProviderConfig("openai", "k", "https://api.openai.com", "gpt-4o-mini")

    assert await provider.call(config, "prompt", 1000) == ""


@pytest.mark.asyncio
async def test_non_success_status_raises_http_error():
    provider = AnthropicProvider(client=_client(_Recorder(status_code=529, payload={"error": "overloaded"})))
    config = ProviderConfig("anthropic", "k", "https://api.anthropic.com", "claude-haiku-4-5-20251001")

    with pytest.raises(ProviderHttpError) as excinfo:
        await provider.call(config, "prompt", 1000)

    assert excinfo.value.status_code == 529
    assert excinfo.value.provider == "anthropic"


@pytest.mark.asyncio
async def test_malformed_json_raises_response_error():
    provider = OpenAIProvider(client=_client(_Recorder(text="<html>oops</html>")))
    config = ProviderConfig("openai", "k", "https://api.openai.com", "gpt-4o-mini")

    with pytest.raises(ProviderResponseError):
        await provider.call(config, "prompt", 1000)


@pytest.mark.asyncio
async def test_slow_backend_is_abandoned_at_deadline():
    async def slow(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(200, json={"content": [{"text": "DONE"}]})

    provider = AnthropicProvider(client=_client(slow))
    config = ProviderConfig("anthropic", "k", "https://api.anthropic.com", "claude-haiku-4-5-20251001")

    with pytest.raises(ProviderTimeoutError) as excinfo:
        await asyncio.wait_for(provider.call(config, "prompt", 50), timeout=2)

    assert excinfo.value.timeout_ms == 50


@pytest.mark.asyncio
async def test_httpx_timeout_maps_to_timeout_error():
    def timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    provider = OpenAIProvider(client=_client(timeout))
    config = ProviderConfig("openai", "k", "https://api.openai.com", "gpt-4o-mini")

    with pytest.raises(ProviderTimeoutError):
        await provider.call(config, "prompt", 1000)


@pytest.mark.asyncio
async def test_connection_failure_maps_to_provider_error():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    provider = GeminiProvider(client=_client(refuse))
    config = ProviderConfig("gemini", "k", "https://generativelanguage.googleapis.com", "gemini-2.0-flash")

    with pytest.raises(ProviderError) as excinfo:
        await provider.call(config, "prompt", 1000)

    assert not isinstance(excinfo.value, ProviderTimeoutError)


def test_create_provider_supports_each_backend():
    assert isinstance(create_provider("anthropic"), AnthropicProvider)
    assert isinstance(create_provider("openai"), OpenAIProvider)
    assert isinstance(create_provider(" Gemini "), GeminiProvider)


def test_create_provider_rejects_unsupported_provider():
    with pytest.raises(ValueError):
        create_provider("cohere")


@pytest.mark.asyncio
async def test_malformed_base_url_maps_to_provider_error():
    recorder = _Recorder(payload={"content": [{"type": "text", "text": "DONE"}]})
    provider = AnthropicProvider(client=_client(recorder))
    config = ProviderConfig("anthropic", "k", "http://[::1", "claude-haiku-4-5-20251001")

    with pytest.raises(ProviderError) as excinfo:
        await provider.call(config, "prompt", 1000)

    assert excinfo.value.provider == "anthropic"
    assert recorder.requests == []
