"""LLM router for adapter selection and error normalization.

- Resolves adapter based on provider name (closed set of five)
- Checks feature flags for provider availability
- Wraps adapter calls with transport error normalization
- Emits llm.request.started / llm.request.finished / llm.request.failed
  events; all events go through safe_kv() so content and keys never leak

Error handling:
- ProviderError from the adapter → re-raised as-is
- Timeout → LLMError(TIMEOUT)
- Network failure → LLMError(PROVIDER_DOWN)
- Anything else → LLMError(PROVIDER_DOWN)
"""

import time
from collections.abc import AsyncIterator
from contextlib import aclosing

import httpx

from polychat.logging import get_logger
from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.anthropic_adapter import AnthropicAdapter
from polychat.services.llm.errors import LLMError, LLMErrorClass
from polychat.services.llm.gemini_adapter import GeminiAdapter
from polychat.services.llm.openai_adapter import OpenAIAdapter, OpenRouterAdapter, XaiAdapter
from polychat.services.llm.types import ModelInfo, Turn
from polychat.services.redact import safe_kv

logger = get_logger(__name__)

# Default timeout for LLM requests in seconds
DEFAULT_TIMEOUT_S = 60.0

SUPPORTED_PROVIDERS = ("openai", "anthropic", "openrouter", "xai", "gemini")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class LLMRouter:
    """Routes LLM requests to the appropriate provider adapter."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        provider_flags: dict[str, bool] | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        """Initialize router with shared HTTP client and feature flags.

        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            provider_flags: Enabled flag per provider; missing entries are enabled.
            timeout_s: Read timeout for every outbound call.
        """
        self._client = client
        self._timeout_s = timeout_s
        flags = provider_flags or {}
        self._feature_flags = {p: flags.get(p, True) for p in SUPPORTED_PROVIDERS}
        self._adapters: dict[str, LLMAdapter] = {
            "openai": OpenAIAdapter(client),
            "anthropic": AnthropicAdapter(client),
            "openrouter": OpenRouterAdapter(client),
            "xai": XaiAdapter(client),
            "gemini": GeminiAdapter(client),
        }

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Get adapter for provider, checking feature flags.

        Raises:
            LLMError: UNSUPPORTED_PROVIDER if provider is unknown or disabled.
        """
        if not self.is_provider_available(provider):
            raise LLMError(
                LLMErrorClass.UNSUPPORTED_PROVIDER,
                f"provider '{provider}' is not supported.",
                provider=provider,
            )
        return self._adapters[provider]

    def is_provider_available(self, provider: str) -> bool:
        """Check if a provider is known and enabled."""
        return provider in self._adapters and self._feature_flags.get(provider, False)

    async def complete(
        self,
        provider: str,
        model: str,
        messages: list[Turn],
        api_key: str,
    ) -> str:
        """Non-streaming completion with error normalization.

        Raises:
            ProviderError: Vendor rejected the request.
            LLMError: With normalized error class on any other failure.
        """
        adapter = self.resolve_adapter(provider)
        base = {"provider": provider, "model_name": model, "streaming": False}

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in messages)),
        )
        start = time.monotonic()

        try:
            text = await adapter.complete(
                model, messages, api_key=api_key, timeout_s=self._timeout_s
            )
        except Exception as e:
            error = self._normalize(e, base, start)
            if error is e:
                raise
            raise error from e

        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=_elapsed_ms(start),
                response_chars=len(text),
            ),
        )
        return text

    async def stream(
        self,
        provider: str,
        model: str,
        messages: list[Turn],
        api_key: str,
        *,
        web_search: bool = False,
    ) -> AsyncIterator[str]:
        """Streaming completion with error normalization.

        Resolves the adapter on first iteration. Closing this generator early
        closes the vendor connection.

        Yields:
            Non-empty text deltas, in vendor order.

        Raises:
            ProviderError: Vendor rejected the request or sent an error event.
            LLMError: With normalized error class on any other failure.
        """
        adapter = self.resolve_adapter(provider)
        base = {
            "provider": provider,
            "model_name": model,
            "streaming": True,
            "web_search": web_search and adapter.supports_web_search,
        }

        logger.info(
            "llm.request.started",
            **safe_kv(**base, message_chars=sum(len(m.content) for m in messages)),
        )
        start = time.monotonic()
        chunks = 0
        response_chars = 0

        try:
            async with aclosing(
                adapter.stream(
                    model,
                    messages,
                    api_key=api_key,
                    timeout_s=self._timeout_s,
                    web_search=web_search,
                )
            ) as deltas:
                async for delta in deltas:
                    chunks += 1
                    response_chars += len(delta)
                    yield delta
        except GeneratorExit:
            logger.info(
                "llm.request.finished",
                **safe_kv(
                    **base,
                    outcome="cancelled",
                    latency_ms=_elapsed_ms(start),
                    chunks=chunks,
                    response_chars=response_chars,
                ),
            )
            raise
        except Exception as e:
            error = self._normalize(e, base, start)
            if error is e:
                raise
            raise error from e

        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=_elapsed_ms(start),
                chunks=chunks,
                response_chars=response_chars,
            ),
        )

    async def list_models(self, provider: str, api_key: str) -> list[ModelInfo]:
        """Fetch the provider's normalized model catalogue."""
        adapter = self.resolve_adapter(provider)
        base = {"provider": provider, "operation": "list_models"}
        start = time.monotonic()

        try:
            models = await adapter.list_models(api_key=api_key, timeout_s=self._timeout_s)
        except Exception as e:
            error = self._normalize(e, base, start)
            if error is e:
                raise
            raise error from e

        logger.info(
            "llm.models.fetched",
            **safe_kv(**base, latency_ms=_elapsed_ms(start), model_count=len(models)),
        )
        return models

    def _normalize(self, exc: Exception, base: dict, start: float) -> LLMError:
        """Log a failed call and map the exception to an LLMError."""
        provider = base["provider"]
        status_code = None

        if isinstance(exc, LLMError):
            error = exc
            status_code = getattr(exc, "status_code", None)
        elif isinstance(exc, httpx.TimeoutException):
            error = LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=provider)
        elif isinstance(exc, httpx.NetworkError):
            error = LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=provider)
        else:
            error = LLMError(
                LLMErrorClass.PROVIDER_DOWN,
                f"Unexpected error: {type(exc).__name__}",
                provider=provider,
            )

        logger.error(
            "llm.request.failed",
            **safe_kv(
                **base,
                outcome="error",
                error_class=error.error_class.value,
                status_code=status_code,
                latency_ms=_elapsed_ms(start),
            ),
        )
        return error
