"""Provider API key service layer.

- One encrypted key per (user, provider); adding a second overwrites the first
- Plaintext keys never persist beyond request scope and are never logged
- A key that cannot be decrypted is an internal fault (500), not user error
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from polychat.db.models import UserApiKey, utcnow
from polychat.errors import InternalError, NotFoundError
from polychat.logging import get_logger
from polychat.schemas.keys import ApiKeyOut, ApiKeyRevealOut, ApiKeyStatusOut
from polychat.services.crypto import CryptoError, decrypt_api_key, encrypt_api_key

logger = get_logger(__name__)


def list_user_keys(db: Session, viewer_id: UUID) -> list[ApiKeyOut]:
    """Key metadata for a user. Never includes key material."""
    stmt = (
        select(UserApiKey)
        .where(UserApiKey.user_id == viewer_id)
        .order_by(UserApiKey.provider.asc())
    )
    return [ApiKeyOut.model_validate(k) for k in db.scalars(stmt).all()]


def list_key_status(db: Session, viewer_id: UUID) -> list[ApiKeyStatusOut]:
    return [
        ApiKeyStatusOut(provider=k.provider, created_at=k.created_at, has_key=True)
        for k in list_user_keys(db, viewer_id)
    ]


def upsert_user_key(db: Session, viewer_id: UUID, provider: str, api_key: str) -> ApiKeyOut:
    """Add or replace the key for a provider.

    Raises:
        InternalError: If the master key is not configured.
    """
    try:
        encrypted = encrypt_api_key(api_key)
    except CryptoError as e:
        logger.error("user_key_encrypt_failed", provider=provider, error=str(e))
        raise InternalError("Failed to encrypt API key") from e

    key = db.get(UserApiKey, (viewer_id, provider))
    if key is None:
        key = UserApiKey(user_id=viewer_id, provider=provider, encrypted_key=encrypted)
        db.add(key)
        event = "user_key_created"
    else:
        key.encrypted_key = encrypted
        key.created_at = utcnow()
        event = "user_key_updated"

    db.commit()
    logger.info(event, provider=provider, api_key_length=len(api_key))

    return ApiKeyOut.model_validate(key)


def get_decrypted_key(db: Session, user_id: UUID, provider: str) -> str | None:
    """Plaintext key for (user, provider), or None when absent.

    Raises:
        InternalError: If the stored ciphertext cannot be decrypted.
    """
    key = db.get(UserApiKey, (user_id, provider))
    if key is None:
        return None

    try:
        return decrypt_api_key(key.encrypted_key)
    except CryptoError as e:
        logger.error("user_key_decrypt_failed", provider=provider, error=str(e))
        raise InternalError("Failed to decrypt API key") from e


def reveal_user_key(db: Session, viewer_id: UUID, provider: str) -> ApiKeyRevealOut:
    key = db.get(UserApiKey, (viewer_id, provider))
    if key is None:
        raise NotFoundError("API key not found")

    plaintext = get_decrypted_key(db, viewer_id, provider)
    return ApiKeyRevealOut(provider=key.provider, api_key=plaintext, created_at=key.created_at)


def delete_user_key(db: Session, viewer_id: UUID, provider: str) -> None:
    key = db.get(UserApiKey, (viewer_id, provider))
    if key is None:
        raise NotFoundError("API key not found")

    db.delete(key)
    db.commit()
    logger.info("user_key_deleted", provider=provider)
