"""LLM adapter layer for provider-agnostic LLM integration.

This module provides a unified interface for calling OpenAI, Anthropic,
OpenRouter, xAI and Gemini models. It includes:

- Provider adapters with async support (non-streaming + streaming + model listing)
- Vendor error-message extraction
- Feature-flag enforcement

Usage:
    from polychat.services.llm import LLMRouter, Turn

    router = LLMRouter(httpx_client, provider_flags=settings.provider_flags)
    text = await router.complete(
        "openai", "gpt-4o", [Turn(role="user", content="Hello!")], api_key="sk-..."
    )
"""

from polychat.services.llm.adapter import LLMAdapter
from polychat.services.llm.errors import (
    PROVIDER_LABELS,
    LLMError,
    LLMErrorClass,
    ProviderError,
    extract_error_message,
    to_api_error,
)
from polychat.services.llm.router import SUPPORTED_PROVIDERS, LLMRouter
from polychat.services.llm.types import ModelInfo, Turn

__all__ = [
    # Core types
    "Turn",
    "ModelInfo",
    # Adapter interface
    "LLMAdapter",
    # Router
    "LLMRouter",
    "SUPPORTED_PROVIDERS",
    # Errors
    "LLMError",
    "LLMErrorClass",
    "ProviderError",
    "PROVIDER_LABELS",
    "extract_error_message",
    "to_api_error",
]
