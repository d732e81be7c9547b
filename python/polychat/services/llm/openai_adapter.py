"""OpenAI-compatible LLM adapters: OpenAI, OpenRouter and xAI.

All three speak the chat completions dialect:
- Endpoint: POST {base_url}/chat/completions
- Headers: Authorization: Bearer <key>, Content-Type: application/json
- Body: {"model", "messages", "stream"}
- Streaming: Server-Sent Events, `data: {...}` lines, terminated by `data: [DONE]`
- Delta text: choices[0].delta.content
- Non-stream text: choices[0].message.content

Only OpenRouter supports web search, by switching to the `:online` model
variant.
"""

from collections.abc import AsyncIterator

import httpx

from polychat.logging import get_logger
from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass
from polychat.services.llm.types import ModelInfo, Turn

logger = get_logger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
XAI_BASE_URL = "https://api.x.ai/v1"

# Substrings that mark non-chat OpenAI models
OPENAI_EXCLUDED_SUBSTRINGS = (
    "audio",
    "whisper",
    "tts",
    "speech",
    "image",
    "dall-e",
    "vision",
    "embedding",
    "ada",
    "moderation",
    "edit",
    "search",
    "similarity",
    "babbage",
    "curie",
    "canary",
    "playground",
    "ft:",
    "realtime",
)

XAI_CONTEXT_LENGTH = 131072


class OpenAICompatibleAdapter(LLMAdapter):
    """Base adapter for vendors exposing the chat completions API."""

    base_url: str = OPENAI_BASE_URL

    async def complete(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
    ) -> str:
        """Non-streaming chat completion."""
        response = await self._client.post(
            f"{self.base_url}/chat/completions",
            headers=self._build_headers(api_key),
            json=self._build_request_body(model, messages, stream=False),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        await self._raise_for_status(response)
        return self._parse_response(self._json_body(response))

    async def stream(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
        web_search: bool = False,
    ) -> AsyncIterator[str]:
        """Streaming chat completion using Server-Sent Events."""
        if web_search and self.supports_web_search:
            model = self._web_search_model(model)

        async with self._client.stream(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._build_headers(api_key),
            json=self._build_request_body(model, messages, stream=True),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        ) as response:
            await self._raise_for_status(response)

            async for event in self._iter_sse_events(response):
                choices = event.get("choices") or []
                if not choices or not isinstance(choices[0], dict):
                    self._log_skipped_event("no_choices")
                    continue

                delta = choices[0].get("delta") or {}
                delta_text = delta.get("content")
                if isinstance(delta_text, str) and delta_text:
                    yield delta_text

    async def list_models(self, *, api_key: str, timeout_s: float) -> list[ModelInfo]:
        response = await self._client.get(
            f"{self.base_url}/models",
            headers=self._build_headers(api_key),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        await self._raise_for_status(response)
        data = self._json_body(response).get("data") or []
        return self._normalize_models([m for m in data if isinstance(m, dict) and "id" in m])

    def _normalize_models(self, models: list[dict]) -> list[ModelInfo]:
        return [
            ModelInfo(
                id=m["id"],
                name=m["id"],
                provider=self.provider,
                created=int(m.get("created") or 0),
            )
            for m in models
        ]

    def _web_search_model(self, model: str) -> str:
        return model

    def _build_headers(self, api_key: str) -> dict[str, str]:
        """Build request headers."""
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _build_request_body(self, model: str, messages: list[Turn], stream: bool) -> dict:
        return {
            "model": model,
            "messages": [self._turn_to_message(turn) for turn in messages],
            "stream": stream,
        }

    def _turn_to_message(self, turn: Turn) -> dict[str, str]:
        """Chat completions uses the same role names as Turn."""
        return {
            "role": turn.role,
            "content": turn.content,
        }

    def _parse_response(self, data: dict) -> str:
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Response missing choices",
                provider=self.provider,
            )

        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Response missing message content",
                provider=self.provider,
            )
        return content


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI chat completions. Model listing keeps chat models only."""

    provider = "openai"
    base_url = OPENAI_BASE_URL

    def _normalize_models(self, models: list[dict]) -> list[ModelInfo]:
        kept = [m for m in models if is_openai_chat_model(m["id"])]
        kept.sort(key=lambda m: int(m.get("created") or 0), reverse=True)
        return super()._normalize_models(kept)


class OpenRouterAdapter(OpenAICompatibleAdapter):
    """OpenRouter. Web search uses the `:online` model suffix."""

    provider = "openrouter"
    base_url = OPENROUTER_BASE_URL

    @property
    def supports_web_search(self) -> bool:
        return True

    def _web_search_model(self, model: str) -> str:
        if ":online" in model:
            return model
        return f"{model}:online"

    def _normalize_models(self, models: list[dict]) -> list[ModelInfo]:
        return [
            ModelInfo(
                id=m["id"],
                name=m.get("name") or m["id"],
                provider=self.provider,
                description=m.get("description"),
                context_length=m.get("context_length"),
                created=int(m.get("created") or 0),
            )
            for m in models
        ]


class XaiAdapter(OpenAICompatibleAdapter):
    """xAI Grok models."""

    provider = "xai"
    base_url = XAI_BASE_URL

    def _normalize_models(self, models: list[dict]) -> list[ModelInfo]:
        return [
            ModelInfo(
                id=m["id"],
                name="Grok " + m["id"].replace("grok-", "").replace("-", " "),
                provider=self.provider,
                context_length=XAI_CONTEXT_LENGTH,
                created=int(m.get("created") or 0),
            )
            for m in models
        ]


def is_openai_chat_model(model_id: str) -> bool:
    """Whether an OpenAI model id names a chat-capable model."""
    id_lower = model_id.lower()
    if any(s in id_lower for s in OPENAI_EXCLUDED_SUBSTRINGS):
        return False
    if id_lower.endswith("-001"):
        return False
    if "davinci" in id_lower and not (
        id_lower.startswith("text-davinci") or id_lower == "davinci-002"
    ):
        return False
    return True
