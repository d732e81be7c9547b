"""Live model catalogue lookups against the provider, with the caller's key."""

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from polychat.errors import InvalidRequestError
from polychat.services.llm import LLMError, LLMRouter, ModelInfo, to_api_error
from polychat.services.user_keys import get_decrypted_key


def _load_key(session_factory: sessionmaker[Session], viewer_id: UUID, provider: str) -> str | None:
    db = session_factory()
    try:
        return get_decrypted_key(db, viewer_id, provider)
    finally:
        db.close()


async def fetch_provider_models(
    session_factory: sessionmaker[Session],
    router: LLMRouter,
    viewer_id: UUID,
    provider: str,
) -> list[ModelInfo]:
    """List the models the viewer's key can use at the provider.

    Raises:
        InvalidRequestError: No key stored, or unknown or disabled provider.
        ProviderApiError: The vendor rejected the listing call.
    """
    provider = provider.strip().lower()
    api_key = await run_in_threadpool(_load_key, session_factory, viewer_id, provider)
    if api_key is None:
        raise InvalidRequestError(f"No API key found for provider '{provider}'")

    try:
        return await router.list_models(provider, api_key)
    except LLMError as e:
        raise to_api_error(e) from e
