"""Tests for the LLM adapter layer.

Test coverage per provider:
- non-streaming success
- streaming success (SSE parsing, empty deltas dropped)
- vendor error body → ProviderError with the vendor's message
- request shaping (headers, roles, system prompt handling, web search)
- model listing normalization

Explicitly Forbidden:
- Live provider calls
- Real API keys anywhere in test code

These tests are pure unit tests that do NOT require database access.
They use respx to mock HTTP requests.
"""

import json

import httpx
import pytest
import respx

from polychat.services.llm import adapter as adapter_module
from polychat.services.llm import LLMError, LLMErrorClass, LLMRouter, ProviderError, Turn
from polychat.services.llm.anthropic_adapter import AnthropicAdapter
from polychat.services.llm.gemini_adapter import GeminiAdapter
from polychat.services.llm.openai_adapter import (
    OpenAIAdapter,
    OpenRouterAdapter,
    XaiAdapter,
    is_openai_chat_model,
)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
XAI_URL = "https://api.x.ai/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


def sse(*events: dict | str) -> str:
    """Build an SSE body from payloads; strings are emitted verbatim."""
    lines = []
    for event in events:
        payload = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {payload}\n\n")
    return "".join(lines)


def openai_delta(text: str | None) -> dict:
    delta = {} if text is None else {"content": text}
    return {"choices": [{"index": 0, "delta": delta}]}


def gemini_event(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


async def collect(stream) -> list[str]:
    return [delta async for delta in stream]


class RecordingLogger:
    """Collects debug events in place of the module logger."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def debug(self, event, **kw):
        self.events.append((event, kw))

    def warning(self, event, **kw):
        self.events.append((event, kw))


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def httpx_client():
    """Create an httpx AsyncClient for testing."""
    return httpx.AsyncClient()


@pytest.fixture
def turns():
    return [
        Turn(role="system", content="You are helpful."),
        Turn(role="user", content="Hello!"),
        Turn(role="assistant", content="Hi there."),
        Turn(role="user", content="How are you?"),
    ]


# =============================================================================
# OpenAI-compatible adapters
# =============================================================================


class TestOpenAIAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_success(self, httpx_client, turns):
        route = respx.post(OPENAI_URL).respond(
            200, json={"choices": [{"message": {"role": "assistant", "content": "Fine!"}}]}
        )

        text = await OpenAIAdapter(httpx_client).complete(
            "gpt-4o", turns, api_key="sk-test", timeout_s=30
        )

        assert text == "Fine!"
        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o"
        assert body["stream"] is False
        assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "user"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_success(self, httpx_client, turns):
        route = respx.post(OPENAI_URL).respond(
            200,
            content=sse(
                {"choices": [{"delta": {"role": "assistant"}}]},
                openai_delta("Hel"),
                openai_delta(""),
                openai_delta("lo"),
                openai_delta(None),
                "[DONE]",
            ),
            headers={"content-type": "text/event-stream"},
        )

        deltas = await collect(
            OpenAIAdapter(httpx_client).stream("gpt-4o", turns, api_key="sk-test", timeout_s=30)
        )

        assert deltas == ["Hel", "lo"]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_skips_malformed_events(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(
            200, content=sse(openai_delta("a"), "{not json", openai_delta("b"), "[DONE]")
        )

        deltas = await collect(
            OpenAIAdapter(httpx_client).stream("gpt-4o", turns, api_key="sk-test", timeout_s=30)
        )

        assert deltas == ["a", "b"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_logs_events_without_text(self, httpx_client, turns, monkeypatch):
        skipped = RecordingLogger()
        monkeypatch.setattr(adapter_module, "logger", skipped)
        respx.post(OPENAI_URL).respond(
            200, content=sse("[1, 2]", {"usage": {}}, openai_delta("ok"), "[DONE]")
        )

        deltas = await collect(
            OpenAIAdapter(httpx_client).stream("gpt-4o", turns, api_key="sk-test", timeout_s=30)
        )

        assert deltas == ["ok"]
        assert skipped.events == [
            ("llm.stream.event_skipped", {"provider": "openai", "reason": "not_an_object"}),
            ("llm.stream.event_skipped", {"provider": "openai", "reason": "no_choices"}),
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_ignores_text_after_done(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(
            200, content=sse(openai_delta("a"), "[DONE]", openai_delta("late"))
        )

        deltas = await collect(
            OpenAIAdapter(httpx_client).stream("gpt-4o", turns, api_key="sk-test", timeout_s=30)
        )

        assert deltas == ["a"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_error_status_raises_provider_error(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(
            401, json={"error": {"message": "Incorrect API key provided", "code": "invalid"}}
        )

        with pytest.raises(ProviderError) as exc_info:
            await collect(
                OpenAIAdapter(httpx_client).stream("gpt-4o", turns, api_key="bad", timeout_s=30)
            )

        assert exc_info.value.status_code == 401
        assert str(exc_info.value) == "OpenAI (HTTP 401): Incorrect API key provided"

    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_error_with_empty_body(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(429, content=b"")

        with pytest.raises(ProviderError) as exc_info:
            await OpenAIAdapter(httpx_client).complete(
                "gpt-4o", turns, api_key="sk-test", timeout_s=30
            )

        assert str(exc_info.value) == "OpenAI (HTTP 429): Rate limit exceeded"

    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_unparseable_body(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(200, content=b"<html>oops</html>")

        with pytest.raises(LLMError) as exc_info:
            await OpenAIAdapter(httpx_client).complete(
                "gpt-4o", turns, api_key="sk-test", timeout_s=30
            )

        assert exc_info.value.error_class == LLMErrorClass.BAD_RESPONSE

    @pytest.mark.asyncio
    @respx.mock
    async def test_web_search_flag_ignored(self, httpx_client, turns):
        route = respx.post(OPENAI_URL).respond(200, content=sse("[DONE]"))

        await collect(
            OpenAIAdapter(httpx_client).stream(
                "gpt-4o", turns, api_key="sk-test", timeout_s=30, web_search=True
            )
        )

        body = json.loads(route.calls.last.request.content)
        assert body["model"] == "gpt-4o"
        assert "tools" not in body

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models_filters_and_sorts(self, httpx_client):
        respx.get("https://api.openai.com/v1/models").respond(
            200,
            json={
                "data": [
                    {"id": "gpt-4o", "created": 100},
                    {"id": "whisper-1", "created": 300},
                    {"id": "gpt-4.1", "created": 200},
                    {"id": "text-embedding-3-small", "created": 400},
                    {"id": "gpt-4o-realtime-preview", "created": 500},
                ]
            },
        )

        models = await OpenAIAdapter(httpx_client).list_models(api_key="sk-test", timeout_s=30)

        assert [m.id for m in models] == ["gpt-4.1", "gpt-4o"]
        assert models[0].provider == "openai"
        assert models[0].name == "gpt-4.1"


class TestOpenAIChatModelFilter:
    @pytest.mark.parametrize("model_id", ["gpt-4o", "gpt-4o-mini", "o1", "davinci-002"])
    def test_chat_models_kept(self, model_id):
        assert is_openai_chat_model(model_id)

    @pytest.mark.parametrize(
        "model_id",
        ["tts-1", "dall-e-3", "text-embedding-ada-002", "gpt-3.5-turbo-001", "ft:gpt-4o:org"],
    )
    def test_non_chat_models_dropped(self, model_id):
        assert not is_openai_chat_model(model_id)


class TestOpenRouterAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_web_search_uses_online_variant(self, httpx_client, turns):
        route = respx.post(OPENROUTER_URL).respond(200, content=sse(openai_delta("x"), "[DONE]"))

        await collect(
            OpenRouterAdapter(httpx_client).stream(
                "meta-llama/llama-3-70b", turns, api_key="or-key", timeout_s=30, web_search=True
            )
        )

        body = json.loads(route.calls.last.request.content)
        assert body["model"] == "meta-llama/llama-3-70b:online"

    @pytest.mark.asyncio
    @respx.mock
    async def test_online_suffix_not_doubled(self, httpx_client, turns):
        route = respx.post(OPENROUTER_URL).respond(200, content=sse("[DONE]"))

        await collect(
            OpenRouterAdapter(httpx_client).stream(
                "some/model:online", turns, api_key="or-key", timeout_s=30, web_search=True
            )
        )

        assert json.loads(route.calls.last.request.content)["model"] == "some/model:online"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models_keeps_metadata(self, httpx_client):
        respx.get("https://openrouter.ai/api/v1/models").respond(
            200,
            json={
                "data": [
                    {
                        "id": "anthropic/claude-3.5-sonnet",
                        "name": "Claude 3.5 Sonnet",
                        "description": "Fast and smart",
                        "context_length": 200000,
                        "created": 1718841600,
                    }
                ]
            },
        )

        models = await OpenRouterAdapter(httpx_client).list_models(api_key="k", timeout_s=30)

        assert models[0].to_dict() == {
            "id": "anthropic/claude-3.5-sonnet",
            "name": "Claude 3.5 Sonnet",
            "provider": "openrouter",
            "description": "Fast and smart",
            "context_length": 200000,
            "created": 1718841600,
        }


class TestXaiAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_success(self, httpx_client, turns):
        route = respx.post(XAI_URL).respond(
            200, content=sse(openai_delta("Gr"), openai_delta("ok"), "[DONE]")
        )

        deltas = await collect(
            XaiAdapter(httpx_client).stream("grok-2", turns, api_key="xai-key", timeout_s=30)
        )

        assert deltas == ["Gr", "ok"]
        assert route.calls.last.request.headers["authorization"] == "Bearer xai-key"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models_display_names(self, httpx_client):
        respx.get("https://api.x.ai/v1/models").respond(
            200, json={"data": [{"id": "grok-2-1212", "created": 1}]}
        )

        models = await XaiAdapter(httpx_client).list_models(api_key="k", timeout_s=30)

        assert models[0].name == "Grok 2 1212"
        assert models[0].context_length == 131072


# =============================================================================
# Anthropic
# =============================================================================


class TestAnthropicAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_extracts_system_and_joins_text(self, httpx_client, turns):
        route = respx.post(ANTHROPIC_URL).respond(
            200,
            json={
                "content": [
                    {"type": "text", "text": "Doing "},
                    {"type": "tool_use", "id": "t1"},
                    {"type": "text", "text": "well."},
                ]
            },
        )

        text = await AnthropicAdapter(httpx_client).complete(
            "claude-3-5-sonnet", turns, api_key="ak", timeout_s=30
        )

        assert text == "Doing well."
        request = route.calls.last.request
        assert request.headers["x-api-key"] == "ak"
        assert request.headers["anthropic-version"] == "2023-06-01"
        body = json.loads(request.content)
        assert body["system"] == "You are helpful."
        assert body["max_tokens"] == 4096
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert "stream" not in body

    @pytest.mark.asyncio
    @respx.mock
    async def test_reasoning_models_get_larger_budget(self, httpx_client, turns):
        route = respx.post(ANTHROPIC_URL).respond(200, json={"content": []})

        await AnthropicAdapter(httpx_client).complete(
            "claude-reasoning-preview", turns, api_key="ak", timeout_s=30
        )

        assert json.loads(route.calls.last.request.content)["max_tokens"] == 8192

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_reads_content_block_deltas(self, httpx_client, turns):
        body = (
            "event: message_start\n"
            'data: {"type": "message_start", "message": {"id": "m1"}}\n\n'
            "event: content_block_delta\n"
            'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hi"}}\n\n'
            "event: ping\n"
            'data: {"type": "ping"}\n\n'
            "event: content_block_delta\n"
            'data: {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "!"}}\n\n'
            "event: message_stop\n"
            'data: {"type": "message_stop"}\n\n'
        )
        route = respx.post(ANTHROPIC_URL).respond(200, content=body)

        deltas = await collect(
            AnthropicAdapter(httpx_client).stream("claude", turns, api_key="ak", timeout_s=30)
        )

        assert deltas == ["Hi", "!"]
        assert json.loads(route.calls.last.request.content)["stream"] is True

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_error_event_raises(self, httpx_client, turns):
        body = sse(
            {"type": "content_block_delta", "delta": {"text": "partial"}},
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )
        respx.post(ANTHROPIC_URL).respond(200, content=body)

        received = []
        with pytest.raises(ProviderError) as exc_info:
            async for delta in AnthropicAdapter(httpx_client).stream(
                "claude", turns, api_key="ak", timeout_s=30
            ):
                received.append(delta)

        assert received == ["partial"]
        assert exc_info.value.status_code is None
        assert str(exc_info.value) == "Anthropic: Overloaded"

    @pytest.mark.asyncio
    @respx.mock
    async def test_web_search_attaches_tool(self, httpx_client, turns):
        route = respx.post(ANTHROPIC_URL).respond(200, content=sse({"type": "message_stop"}))

        await collect(
            AnthropicAdapter(httpx_client).stream(
                "claude", turns, api_key="ak", timeout_s=30, web_search=True
            )
        )

        tools = json.loads(route.calls.last.request.content)["tools"]
        assert tools == [{"type": "web_search_20250305", "name": "web_search", "max_uses": 5}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_status(self, httpx_client, turns):
        respx.post(ANTHROPIC_URL).respond(
            400,
            json={"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}},
        )

        with pytest.raises(ProviderError) as exc_info:
            await AnthropicAdapter(httpx_client).complete(
                "claude", turns, api_key="ak", timeout_s=30
            )

        assert str(exc_info.value) == "Anthropic (HTTP 400): bad"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models(self, httpx_client):
        respx.get("https://api.anthropic.com/v1/models").respond(
            200,
            json={
                "data": [
                    {
                        "id": "claude-3-5-sonnet-20241022",
                        "display_name": "Claude 3.5 Sonnet",
                        "created_at": "2024-10-22T00:00:00Z",
                    }
                ]
            },
        )

        models = await AnthropicAdapter(httpx_client).list_models(api_key="ak", timeout_s=30)

        assert models[0].name == "Claude 3.5 Sonnet"
        assert models[0].created == 1729555200
        assert models[0].context_length == 200000


# =============================================================================
# Gemini
# =============================================================================


class TestGeminiAdapter:
    @pytest.mark.asyncio
    @respx.mock
    async def test_complete_maps_roles_and_drops_system(self, httpx_client, turns):
        route = respx.post(f"{GEMINI_BASE}/gemini-1.5-pro:generateContent").respond(
            200, json=gemini_event("Bonjour")
        )

        text = await GeminiAdapter(httpx_client).complete(
            "gemini-1.5-pro", turns, api_key="g-key", timeout_s=30
        )

        assert text == "Bonjour"
        request = route.calls.last.request
        assert request.headers["x-goog-api-key"] == "g-key"
        assert "key=" not in str(request.url)
        body = json.loads(request.content)
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["contents"][0]["parts"] == [{"text": "Hello!"}]
        assert body["generationConfig"]["maxOutputTokens"] == 8192

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_success(self, httpx_client, turns):
        route = respx.post(
            f"{GEMINI_BASE}/gemini-1.5-pro:streamGenerateContent", params={"alt": "sse"}
        ).respond(200, content=sse(gemini_event("Bon"), {"candidates": []}, gemini_event("jour")))

        deltas = await collect(
            GeminiAdapter(httpx_client).stream(
                "gemini-1.5-pro", turns, api_key="g-key", timeout_s=30
            )
        )

        assert deltas == ["Bon", "jour"]
        assert "tools" not in json.loads(route.calls.last.request.content)

    @pytest.mark.asyncio
    @respx.mock
    async def test_web_search_attaches_google_search(self, httpx_client, turns):
        route = respx.post(
            f"{GEMINI_BASE}/gemini-1.5-pro:streamGenerateContent", params={"alt": "sse"}
        ).respond(200, content=sse(gemini_event("x")))

        await collect(
            GeminiAdapter(httpx_client).stream(
                "gemini-1.5-pro", turns, api_key="g-key", timeout_s=30, web_search=True
            )
        )

        assert json.loads(route.calls.last.request.content)["tools"] == [{"google_search": {}}]

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_without_message(self, httpx_client, turns):
        respx.post(f"{GEMINI_BASE}/gemini-1.5-pro:generateContent").respond(503, json={})

        with pytest.raises(ProviderError) as exc_info:
            await GeminiAdapter(httpx_client).complete(
                "gemini-1.5-pro", turns, api_key="g-key", timeout_s=30
            )

        assert str(exc_info.value) == "Gemini (HTTP 503): Service Unavailable"

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models_filters(self, httpx_client):
        respx.get(GEMINI_BASE).respond(
            200,
            json={
                "models": [
                    {"name": "models/gemini-1.5-pro", "description": "Mid-size"},
                    {"name": "models/text-embedding-004"},
                    {"name": "models/gemini-embedding-exp"},
                    {"name": "models/gemini-pro-vision"},
                ]
            },
        )

        models = await GeminiAdapter(httpx_client).list_models(api_key="g-key", timeout_s=30)

        assert [m.id for m in models] == ["gemini-1.5-pro"]
        assert models[0].name == "Gemini 1.5 pro"
        assert models[0].description == "Mid-size"


# =============================================================================
# Router
# =============================================================================


class TestLLMRouter:
    def test_disabled_provider_unavailable(self, httpx_client):
        router = LLMRouter(httpx_client, provider_flags={"xai": False})
        assert router.is_provider_available("openai")
        assert not router.is_provider_available("xai")
        assert not router.is_provider_available("mistral")

    @pytest.mark.asyncio
    async def test_unknown_provider_raises(self, httpx_client, turns):
        router = LLMRouter(httpx_client)
        with pytest.raises(LLMError) as exc_info:
            await collect(router.stream("mistral", "m", turns, "k"))
        assert exc_info.value.error_class == LLMErrorClass.UNSUPPORTED_PROVIDER

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_normalized(self, httpx_client, turns):
        respx.post(OPENAI_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(LLMError) as exc_info:
            await LLMRouter(httpx_client).complete("openai", "gpt-4o", turns, "sk")

        assert exc_info.value.error_class == LLMErrorClass.TIMEOUT

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error_normalized(self, httpx_client, turns):
        respx.post(OPENAI_URL).mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(LLMError) as exc_info:
            await collect(LLMRouter(httpx_client).stream("openai", "gpt-4o", turns, "sk"))

        assert exc_info.value.error_class == LLMErrorClass.PROVIDER_DOWN

    @pytest.mark.asyncio
    @respx.mock
    async def test_provider_error_passes_through(self, httpx_client, turns):
        respx.post(OPENAI_URL).respond(500, json={"error": {"message": "server melted"}})

        with pytest.raises(ProviderError) as exc_info:
            await collect(LLMRouter(httpx_client).stream("openai", "gpt-4o", turns, "sk"))

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    @respx.mock
    async def test_stream_delegates_to_adapter(self, httpx_client, turns):
        respx.post(ANTHROPIC_URL).respond(
            200,
            content=sse(
                {"type": "content_block_delta", "delta": {"text": "ok"}},
                {"type": "message_stop"},
            ),
        )

        deltas = await collect(LLMRouter(httpx_client).stream("anthropic", "c", turns, "ak"))

        assert deltas == ["ok"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_models_error_status(self, httpx_client):
        respx.get("https://api.openai.com/v1/models").respond(401, json={})

        with pytest.raises(ProviderError):
            await LLMRouter(httpx_client).list_models("openai", "bad")
