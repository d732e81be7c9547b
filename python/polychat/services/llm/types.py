"""Shared type definitions for the LLM adapter layer.

- Turn: Provider-agnostic conversation turn
- ModelInfo: One entry of a provider's model catalogue

Streaming results are plain `str` deltas; adapters never yield empty strings.
"""

from dataclasses import asdict, dataclass
from typing import Literal


@dataclass(frozen=True)
class Turn:
    """Provider-agnostic conversation turn.

    Attributes:
        role: One of "system", "user", or "assistant"
        content: The text content of the turn
    """

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class ModelInfo:
    """A model advertised by a provider.

    Attributes:
        id: The identifier sent back to the provider
        name: Display name
        provider: Provider name ("openai", "anthropic", ...)
        description: Provider-supplied description, when there is one
        context_length: Context window in tokens, when known
        created: Unix timestamp of model creation, 0 when unknown
    """

    id: str
    name: str
    provider: str
    description: str | None = None
    context_length: int | None = None
    created: int = 0

    def to_dict(self) -> dict:
        return asdict(self)
