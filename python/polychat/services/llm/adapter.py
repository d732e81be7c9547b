"""Abstract base class for LLM adapters.

- Async adapters sharing one httpx.AsyncClient
- No retries inside adapters
- No DB access
- No logging of request/response bodies
- Non-success responses raise ProviderError with the vendor's message;
  transport errors bubble up to the router for normalization
"""

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

import httpx

from polychat.logging import get_logger
from polychat.services.llm.errors import (
    LLMError,
    LLMErrorClass,
    ProviderError,
    extract_error_message,
)
from polychat.services.llm.types import ModelInfo, Turn

logger = get_logger(__name__)

SSE_DATA_PREFIX = "data: "


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    Each adapter implements provider-specific HTTP communication and
    Turn → provider format conversion.
    """

    provider: str = ""

    def __init__(self, client: httpx.AsyncClient):
        """Initialize adapter with shared HTTP client.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
        """
        self._client = client

    @property
    def supports_web_search(self) -> bool:
        """Whether stream(web_search=True) attaches search tooling."""
        return False

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
    ) -> str:
        """Non-streaming completion. Returns the full reply text.

        Raises:
            ProviderError: On non-2xx HTTP response.
            LLMError: If the response body cannot be parsed.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
        """

    @abstractmethod
    def stream(
        self,
        model: str,
        messages: list[Turn],
        *,
        api_key: str,
        timeout_s: float,
        web_search: bool = False,
    ) -> AsyncIterator[str]:
        """Streaming completion. Yields non-empty text deltas in order.

        Adapters without web search support ignore the flag.

        Raises:
            ProviderError: On non-2xx HTTP response.
            httpx.TimeoutException: On request timeout.
            httpx.NetworkError: On network failure.
        """

    @abstractmethod
    async def list_models(self, *, api_key: str, timeout_s: float) -> list[ModelInfo]:
        """Fetch and normalize the provider's model catalogue."""

    # -------------------------------------------------------------------------
    # Shared helpers
    # -------------------------------------------------------------------------

    async def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise ProviderError for a non-success response.

        Works for both buffered and streamed responses.
        """
        if response.is_success:
            return
        await response.aread()
        message = extract_error_message(self.provider, response.status_code, response.text)
        raise ProviderError(self.provider, response.status_code, message)

    def _json_body(self, response: httpx.Response) -> dict:
        """Parse a whole response body; a failure is fatal for the request."""
        try:
            data = response.json()
        except ValueError as e:
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Unparseable vendor response",
                provider=self.provider,
            ) from e
        if not isinstance(data, dict):
            raise LLMError(
                LLMErrorClass.BAD_RESPONSE,
                "Unexpected vendor response shape",
                provider=self.provider,
            )
        return data

    async def _iter_sse_events(self, response: httpx.Response) -> AsyncIterator[dict]:
        """Yield parsed JSON payloads of `data: ` lines until `[DONE]` or EOF.

        Malformed or non-object payloads are logged and skipped.
        """
        async for line in response.aiter_lines():
            if not line.startswith(SSE_DATA_PREFIX):
                continue

            data_str = line[len(SSE_DATA_PREFIX) :].strip()
            if data_str == "[DONE]":
                return

            try:
                event = json.loads(data_str)
            except json.JSONDecodeError:
                logger.warning(
                    "llm.stream.event_skipped",
                    provider=self.provider,
                    payload_length=len(data_str),
                )
                continue

            if not isinstance(event, dict):
                self._log_skipped_event("not_an_object")
                continue

            yield event

    def _log_skipped_event(self, reason: str) -> None:
        logger.debug("llm.stream.event_skipped", provider=self.provider, reason=reason)
