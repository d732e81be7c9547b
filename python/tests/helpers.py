"""Test helpers for authentication and common test operations.

Provides:
- Token minting for test authentication
- Header generation for test requests
- Small factories for chats, messages and stored keys
- A scripted stand-in for the LLM router
"""

import time
from collections.abc import AsyncIterator
from uuid import UUID, uuid4

import jwt
from sqlalchemy.orm import Session

from polychat.auth.verifier import mint_access_token
from polychat.config import get_settings
from polychat.db.models import Chat
from polychat.services.chats import insert_message
from polychat.services.llm import LLMError, ModelInfo, Turn
from polychat.services.user_keys import upsert_user_key

# Default test token settings
DEFAULT_EXPIRES_IN = 3600  # 1 hour


def mint_test_token(user_id: UUID | str, expires_in: int = DEFAULT_EXPIRES_IN) -> str:
    """Mint a valid test JWT signed with the configured secret."""
    return mint_access_token(UUID(str(user_id)), get_settings().jwt_secret, expires_in)


def mint_expired_token(user_id: UUID | str) -> str:
    """Mint a token that expired 1 hour ago (well past the clock skew)."""
    now = int(time.time())
    payload = {"sub": str(user_id), "iat": now - 7200, "exp": now - 3600}
    return jwt.encode(payload, get_settings().jwt_secret, algorithm="HS256")


def mint_token_with_bad_signature(user_id: UUID | str) -> str:
    """Mint a token signed with a different secret."""
    now = int(time.time())
    payload = {"sub": str(user_id), "iat": now, "exp": now + DEFAULT_EXPIRES_IN}
    return jwt.encode(payload, "some-other-secret", algorithm="HS256")


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    """Return headers dict with valid Authorization for the given user."""
    token = mint_test_token(user_id, **token_kwargs)
    return {"Authorization": f"Bearer {token}"}


def create_test_user_id() -> UUID:
    """Generate a random UUID for a test user."""
    return uuid4()


# =============================================================================
# Data factories
# =============================================================================


def create_test_chat(
    db: Session,
    user_id: UUID,
    *,
    title: str = "New Chat",
    provider: str = "openai",
    model: str = "gpt-4o",
    system_prompt: str | None = None,
) -> Chat:
    chat = Chat(
        user_id=user_id,
        title=title,
        system_prompt=system_prompt,
        provider=provider,
        model=model,
        pinned=False,
        is_branch=False,
        next_seq=1,
    )
    db.add(chat)
    db.commit()
    return chat


def add_messages(db: Session, chat_id: UUID, *pairs: tuple[str, str]) -> None:
    """Insert (role, content) pairs in order."""
    for role, content in pairs:
        insert_message(db, chat_id, role, content)


def store_key(db: Session, user_id: UUID, provider: str = "openai", key: str = "sk-test") -> None:
    upsert_user_key(db, user_id, provider, key)


# =============================================================================
# Scripted router
# =============================================================================


class ScriptedRouter:
    """Stand-in for LLMRouter that replays a fixed script.

    Args:
        deltas: Text deltas yielded in order by stream().
        error: Raised by stream() after the deltas, or by complete().
        reply: Returned by complete().
        unavailable: Providers reported as unavailable.
    """

    def __init__(
        self,
        deltas: list[str] | None = None,
        *,
        error: LLMError | None = None,
        reply: str = "scripted reply",
        unavailable: set[str] | None = None,
        models: list[ModelInfo] | None = None,
    ):
        self.deltas = deltas or []
        self.error = error
        self.reply = reply
        self.unavailable = unavailable or set()
        self.models = models or []
        self.calls: list[dict] = []
        self.closed = False

    def is_provider_available(self, provider: str) -> bool:
        return provider not in self.unavailable

    async def complete(
        self, provider: str, model: str, messages: list[Turn], api_key: str
    ) -> str:
        self.calls.append(
            {"provider": provider, "model": model, "messages": messages, "api_key": api_key}
        )
        if self.error is not None:
            raise self.error
        return self.reply

    async def stream(
        self,
        provider: str,
        model: str,
        messages: list[Turn],
        api_key: str,
        *,
        web_search: bool = False,
    ) -> AsyncIterator[str]:
        self.calls.append(
            {
                "provider": provider,
                "model": model,
                "messages": messages,
                "api_key": api_key,
                "web_search": web_search,
            }
        )
        try:
            for delta in self.deltas:
                yield delta
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True

    async def list_models(self, provider: str, api_key: str) -> list[ModelInfo]:
        if self.error is not None:
            raise self.error
        return self.models
