"""Application settings loaded from environment variables.

Environment Configuration:
    POLYCHAT_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: SQLAlchemy connection string (required)
    JWT_SECRET: HS256 secret for bearer and websocket tokens (required)

Key Vault:
    POLYCHAT_KEY_ENCRYPTION_KEY: Base64-encoded 32-byte master key used to
        encrypt provider API keys at rest. Required in staging/prod.

Provider flags:
    ENABLE_OPENAI, ENABLE_ANTHROPIC, ENABLE_OPENROUTER, ENABLE_XAI, ENABLE_GEMINI
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Validation rules:
    - DATABASE_URL and JWT_SECRET are always required
    - POLYCHAT_KEY_ENCRYPTION_KEY is required in staging and prod only
    """

    polychat_env: Environment = Field(default=Environment.LOCAL, alias="POLYCHAT_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    jwt_secret: Annotated[str, Field(alias="JWT_SECRET")]
    jwt_ttl_seconds: int = Field(default=7 * 24 * 3600, alias="JWT_TTL_SECONDS")

    polychat_key_encryption_key: str | None = Field(
        default=None, alias="POLYCHAT_KEY_ENCRYPTION_KEY"
    )

    log_json: bool = Field(default=True, alias="LOG_JSON")

    # Streaming pipeline
    broadcast_capacity: int = Field(default=100, alias="BROADCAST_CAPACITY")
    history_limit: int = Field(default=10, alias="HISTORY_LIMIT")
    llm_timeout_seconds: float = Field(default=60.0, alias="LLM_TIMEOUT_SECONDS")

    # Provider feature flags
    enable_openai: bool = Field(default=True, alias="ENABLE_OPENAI")
    enable_anthropic: bool = Field(default=True, alias="ENABLE_ANTHROPIC")
    enable_openrouter: bool = Field(default=True, alias="ENABLE_OPENROUTER")
    enable_xai: bool = Field(default=True, alias="ENABLE_XAI")
    enable_gemini: bool = Field(default=True, alias="ENABLE_GEMINI")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure secrets are present for the current environment."""
        if not self.jwt_secret.strip():
            raise ValueError("JWT_SECRET must not be empty")

        if self.polychat_env in (Environment.STAGING, Environment.PROD):
            if not self.polychat_key_encryption_key:
                raise ValueError(
                    "POLYCHAT_KEY_ENCRYPTION_KEY is required for "
                    f"POLYCHAT_ENV={self.polychat_env.value}"
                )

        if self.broadcast_capacity < 1:
            raise ValueError("BROADCAST_CAPACITY must be at least 1")

        return self

    @property
    def provider_flags(self) -> dict[str, bool]:
        """Feature flags keyed by provider name."""
        return {
            "openai": self.enable_openai,
            "anthropic": self.enable_anthropic,
            "openrouter": self.enable_openrouter,
            "xai": self.enable_xai,
            "gemini": self.enable_gemini,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
