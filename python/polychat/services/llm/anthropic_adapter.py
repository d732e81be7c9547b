"""Anthropic LLM adapter implementation.

- Endpoint: POST https://api.anthropic.com/v1/messages
- Headers: x-api-key: <key>, anthropic-version: 2023-06-01, Content-Type: application/json

Turn conversion:
- System turn extracted to the top-level "system" field (the messages array
  carries only user/assistant turns)
- max_tokens is 4096, or 8192 for models whose name contains "reasoning"

Response (non-stream): text = concatenation of content[].text where type="text"

Streaming:
- "event: <type>" / "data: {...}" pairs
- Text arrives in content_block_delta events as delta.text
- An "error" event mid-stream raises ProviderError
- Web search attaches the server-side web_search tool
"""

from collections.abc import AsyncIterator
from datetime import datetime

import httpx

from polychat.logging import get_logger
from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass, ProviderError
from polychat.services.llm.types import ModelInfo, Turn

logger = get_logger(__name__)

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_API_VERSION = "2023-06-01"

DEFAULT_MAX_TOKENS = 4096
REASONING_MAX_TOKENS = 8192

ANTHROPIC_CONTEXT_LENGTH = 200000

# Stream events that carry no text and are expected
KNOWN_EVENT_TYPES = frozenset(
    {"message_start", "message_delta", "content_block_start", "content_block_stop", "ping"}
)

WEB_SEARCH_TOOL = {
    "type": "web_search_20250305",
    "name": "web_search",
    "max_uses": 5,
}


class AnthropicAdapter(LLMAdapter):
    """Anthropic API adapter for the messages endpoint."""

    provider = "anthropic"

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
        """Non-streaming message generation."""
        response = await self._client.post(
            f"{ANTHROPIC_BASE_URL}/messages",
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
        """Streaming message generation using Server-Sent Events."""
        body = self._build_request_body(model, messages, stream=True)
        if web_search:
            body["tools"] = [WEB_SEARCH_TOOL]

        async with self._client.stream(
            "POST",
            f"{ANTHROPIC_BASE_URL}/messages",
            headers=self._build_headers(api_key),
            json=body,
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        ) as response:
            await self._raise_for_status(response)

            async for event in self._iter_sse_events(response):
                event_type = event.get("type", "")

                if event_type == "content_block_delta":
                    delta = event.get("delta") or {}
                    delta_text = delta.get("text")
                    if isinstance(delta_text, str) and delta_text:
                        yield delta_text
                    continue

                if event_type == "message_stop":
                    return

                if event_type == "error":
                    error = event.get("error") or {}
                    raise ProviderError(
                        self.provider,
                        None,
                        error.get("message") or "Stream error",
                    )

                if event_type not in KNOWN_EVENT_TYPES:
                    self._log_skipped_event(event_type or "untyped")

    async def list_models(self, *, api_key: str, timeout_s: float) -> list[ModelInfo]:
        response = await self._client.get(
            f"{ANTHROPIC_BASE_URL}/models",
            headers=self._build_headers(api_key),
            timeout=httpx.Timeout(timeout_s, connect=10.0),
        )
        await self._raise_for_status(response)
        data = self._json_body(response).get("data") or []

        return [
            ModelInfo(
                id=m["id"],
                name=m.get("display_name") or m["id"],
                provider=self.provider,
                context_length=ANTHROPIC_CONTEXT_LENGTH,
                created=_parse_created_at(m.get("created_at")),
            )
            for m in data
            if isinstance(m, dict) and "id" in m
        ]

    def _build_headers(self, api_key: str) -> dict[str, str]:
        """Build request headers."""
        return {
            "x-api-key": api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_request_body(self, model: str, messages: list[Turn], stream: bool) -> dict:
        """Build request body, extracting the system turn to its own field."""
        system_prompt = None
        chat_messages = []

        for turn in messages:
            if turn.role == "system":
                system_prompt = turn.content
            else:
                chat_messages.append(self._turn_to_message(turn))

        body: dict = {
            "model": model,
            "max_tokens": max_tokens_for(model),
            "messages": chat_messages,
        }
        if stream:
            body["stream"] = True

        if system_prompt:
            body["system"] = system_prompt

        return body

    def _turn_to_message(self, turn: Turn) -> dict[str, str]:
        return {
            "role": turn.role,
            "content": turn.content,
        }

    def _parse_response(self, data: dict) -> str:
        """Parse non-streaming response."""
        content_blocks = data.get("content")
        if not isinstance(content_blocks, list):
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Response missing content",
                provider=self.provider,
            )

        return "".join(
            block.get("text", "")
            for block in content_blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )


def max_tokens_for(model: str) -> int:
    if "reasoning" in model:
        return REASONING_MAX_TOKENS
    return DEFAULT_MAX_TOKENS


def _parse_created_at(value: object) -> int:
    """RFC 3339 timestamp to unix seconds; 0 when absent or unparsable."""
    if not isinstance(value, str):
        return 0
    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        return 0
