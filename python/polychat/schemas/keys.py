"""API key schemas.

Plaintext keys only ever appear in the upsert request and in the explicit
single-key read; list responses never carry key material.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from polychat.db.models import LLMProvider

# Valid providers - must match DB constraint
VALID_PROVIDERS = {p.value for p in LLMProvider}


class ApiKeyCreate(BaseModel):
    """Request schema for adding or replacing a provider key.

    This is an upsert: a second key for the same provider overwrites the first.
    """

    provider: str = Field(..., description="LLM provider name")
    api_key: str = Field(..., min_length=1, description="The plaintext API key to store")

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        """Ensure provider is valid and lowercase."""
        v_lower = v.strip().lower()
        if v_lower not in VALID_PROVIDERS:
            raise ValueError(f"Provider must be one of: {', '.join(sorted(VALID_PROVIDERS))}")
        return v_lower

    @field_validator("api_key")
    @classmethod
    def strip_api_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key must not be blank")
        return v


class ApiKeyOut(BaseModel):
    """Safe key metadata. Never includes the ciphertext."""

    provider: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApiKeyStatusOut(ApiKeyOut):
    has_key: bool = True


class ApiKeyRevealOut(BaseModel):
    """Decrypted key, returned only by GET /keys/{provider}."""

    provider: str
    api_key: str
    created_at: datetime
