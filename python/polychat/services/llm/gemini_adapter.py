"""Google Gemini LLM adapter implementation.

- Endpoint: POST https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent
- Streaming: :streamGenerateContent?alt=sse
- Header: x-goog-api-key: <key>
- The key never goes in a query param

Turn conversion:
- System turns are dropped
- "user" stays "user", every other role becomes "model"
- contents: [{"role": ..., "parts": [{"text": ...}]}]

Text is read from candidates[0].content.parts[0].text, both for the whole
response and for each streamed event. Web search attaches the
google_search grounding tool.
"""

from collections.abc import AsyncIterator

import httpx

from polychat.logging import get_logger
from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.types import ModelInfo, Turn

logger = get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"

GEMINI_CONTEXT_LENGTH = 32768

GENERATION_CONFIG = {
    "temperature": 0.7,
    "topP": 0.8,
    "topK": 40,
    "maxOutputTokens": 8192,
}


class GeminiAdapter(LLMAdapter):
    """Google Gemini API adapter."""

    provider = "gemini"

    @property
    def supports_web_search(self) -> bool:
        return True

    async def complete(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
    ) -> str:
        """Non-streaming content generation."""
        response = await self._client.post(
            f"{GEMINI_BASE_URL}/{model}:generateContent",
            headers=self._build_headers(api_key),
            json=self._build_request_body(messages),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        await self._raise_for_status(response)
        return _candidate_text(self._json_body(response))

    async def stream(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
        web_search: bool = False,
    ) -> AsyncIterator[str]:
        """Streaming content generation using Server-Sent Events."""
        body = self._build_request_body(messages)
        if web_search:
            body["tools"] = [{"google_search": {}}]

        async with self._client.stream(
            "POST",
            f"{GEMINI_BASE_URL}/{model}:streamGenerateContent",
            params={"alt": "sse"},
            headers=self._build_headers(api_key),
            json=body,
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        ) as response:
            await self._raise_for_status(response)

            async for event in self._iter_sse_events(response):
                if not event.get("candidates"):
                    self._log_skipped_event("no_candidates")
                    continue
                delta_text = _candidate_text(event)
                if delta_text:
                    yield delta_text

    async def list_models(self, *, api_key: str, timeout_s: float) -> list[ModelInfo]:
        response = await self._client.get(
            GEMINI_BASE_URL,
            headers=self._build_headers(api_key),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        await self._raise_for_status(response)
        models = self._json_body(response).get("models") or []

        result = []
        for m in models:
            if not isinstance(m, dict):
                continue
            name = m.get("name", "")
            if "gemini" not in name or "embedding" in name or "vision" in name:
                continue
            model_id = name.rsplit("/", 1)[-1]
            result.append(
                ModelInfo(
                    id=model_id,
                    name="Gemini " + model_id.replace("gemini-", "").replace("-", " "),
                    provider=self.provider,
                    description=m.get("description"),
                    context_length=GEMINI_CONTEXT_LENGTH,
                    created=0,
                )
            )
        return result

    def _build_headers(self, api_key: str) -> dict[str, str]:
        """Build request headers. The API key goes in a header, never the URL."""
        return {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, messages: list[Turn]) -> dict:
        return {
            "contents": [self._turn_to_content(turn) for turn in messages if turn.role != "system"],
            "generationConfig": dict(GENERATION_CONFIG),
        }

    def _turn_to_content(self, turn: Turn) -> dict:
        return {
            "role": "user" if turn.role == "user" else "model",
            "parts": [{"text": turn.content}],
        }


def _candidate_text(data: dict) -> str:
    """candidates[0].content.parts[0].text, or "" when any level is missing."""
    candidates = data.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    if not parts or not isinstance(parts[0], dict):
        return ""
    text = parts[0].get("text")
    return text if isinstance(text, str) else ""
