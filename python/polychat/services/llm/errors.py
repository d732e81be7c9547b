"""LLM error types and vendor error-message extraction.

Two exception types leave this package:
- ProviderError: the vendor answered with a non-success HTTP status (or sent
  an error event mid-stream). Carries the vendor label, status and message.
- LLMError: everything else (timeouts, network failures, unparseable bodies,
  unknown or disabled providers), tagged with an LLMErrorClass.
"""

import json
from enum import Enum

from polychat.errors import ApiError, InternalError, InvalidRequestError, ProviderApiError

PROVIDER_LABELS: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "openrouter": "OpenRouter",
    "xai": "xAI",
    "gemini": "Gemini",
}


class LLMErrorClass(str, Enum):
    """Normalized LLM error classifications."""

    UNSUPPORTED_PROVIDER = "E_LLM_UNSUPPORTED_PROVIDER"
    PROVIDER_ERROR = "E_LLM_PROVIDER_ERROR"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    BAD_RESPONSE = "E_LLM_BAD_RESPONSE"


class LLMError(Exception):
    """Exception for LLM-related errors.

    Attributes:
        error_class: The normalized error classification
        message: Human-readable error message
        provider: The provider involved (if known)
    """

    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)


class ProviderError(LLMError):
    """A vendor rejected the request.

    str(err) is "{Label} (HTTP {code}): {message}", or "{Label}: {message}"
    when there is no status code.
    """

    def __init__(self, provider: str, status_code: int | None, message: str):
        super().__init__(LLMErrorClass.PROVIDER_ERROR, message, provider=provider)
        self.status_code = status_code
        self.label = PROVIDER_LABELS.get(provider, provider)

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.label} (HTTP {self.status_code}): {self.message}"
        return f"{self.label}: {self.message}"


def default_status_message(provider: str, status_code: int) -> str:
    """Generic message for a failed response with an empty body."""
    if status_code == 429:
        return "Rate limit exceeded"
    if status_code == 401:
        return "Invalid API key"
    if status_code == 400:
        return "Bad request"
    if status_code == 503:
        return "Service Unavailable" if provider == "gemini" else "Service temporarily unavailable"
    return f"HTTP {status_code}"


def extract_error_message(provider: str, status_code: int, body: str) -> str:
    """Pull a human-readable message out of a vendor error body.

    - JSON with error.message: that message
    - JSON without it: "Service Error" ("Service Unavailable" for Gemini)
    - Non-JSON text: the raw text
    - Empty body: a status-based default
    """
    if not body.strip():
        return default_status_message(provider, status_code)

    try:
        data = json.loads(body)
    except ValueError:
        return body

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]

    return "Service Unavailable" if provider == "gemini" else "Service Error"


def to_api_error(error: LLMError) -> ApiError:
    """Map a provider-layer failure onto the HTTP error taxonomy.

    - ProviderError: the vendor's status when valid, else 502
    - Unknown or disabled provider: 400
    - Unparseable vendor body: 500
    - Timeouts and network failures: 502
    """
    if isinstance(error, ProviderError):
        return ProviderApiError(str(error), error.status_code)
    if error.error_class == LLMErrorClass.UNSUPPORTED_PROVIDER:
        return InvalidRequestError(error.message)
    if error.error_class == LLMErrorClass.BAD_RESPONSE:
        return InternalError(error.message)
    return ProviderApiError(error.message)
