"""Key vault: symmetric encryption for provider API keys at rest.

Uses XSalsa20-Poly1305 authenticated encryption via PyNaCl's SecretBox.

Storage format:
- base64(nonce || ciphertext), one text column per (user, provider)
- A fresh 24-byte random nonce per encryption, so re-encrypting the same key
  yields a different ciphertext and an upsert simply replaces the row

Security invariants:
- Never log plaintext keys or ciphertext
- Master key is validated on load (32 bytes, base64 in the environment)
- Decryption fails if the master key is wrong or the ciphertext was tampered
  with; callers treat that as an internal fault, not a user error
"""

import base64
import binascii
import os
from functools import lru_cache

from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.secret import SecretBox

from polychat.config import get_settings
from polychat.logging import get_logger

logger = get_logger(__name__)

NONCE_SIZE = SecretBox.NONCE_SIZE

MASTER_KEY_SIZE = SecretBox.KEY_SIZE


class CryptoError(Exception):
    """Raised when cryptographic operations fail."""

    pass


@lru_cache(maxsize=1)
def _get_master_key() -> bytes:
    """Load and validate the master key from settings.

    Raises:
        CryptoError: If the key is missing, invalid base64, or wrong size.
    """
    key_b64 = get_settings().polychat_key_encryption_key
    if not key_b64:
        raise CryptoError("POLYCHAT_KEY_ENCRYPTION_KEY is not set")

    try:
        key = base64.b64decode(key_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"POLYCHAT_KEY_ENCRYPTION_KEY is not valid base64: {e}") from e

    if len(key) != MASTER_KEY_SIZE:
        raise CryptoError(
            f"POLYCHAT_KEY_ENCRYPTION_KEY must be {MASTER_KEY_SIZE} bytes, got {len(key)} bytes"
        )

    return key


def require_master_key() -> bytes:
    """Return the configured 32-byte master key.

    Raises:
        CryptoError: If the key is missing or invalid.
    """
    return _get_master_key()


def clear_master_key_cache() -> None:
    """Clear the cached master key. Useful for testing."""
    _get_master_key.cache_clear()


def encrypt(plaintext: str, master_key: bytes) -> str:
    """Encrypt a secret and return base64(nonce || ciphertext).

    Raises:
        CryptoError: If the master key is unusable.
    """
    if len(master_key) != MASTER_KEY_SIZE:
        raise CryptoError(f"Master key must be {MASTER_KEY_SIZE} bytes, got {len(master_key)}")

    box = SecretBox(master_key)
    nonce = os.urandom(NONCE_SIZE)
    # EncryptedMessage is nonce + ciphertext
    sealed = box.encrypt(plaintext.encode("utf-8"), nonce)
    return base64.b64encode(bytes(sealed)).decode("ascii")


def decrypt(ciphertext_b64: str, master_key: bytes) -> str:
    """Decrypt a value produced by encrypt().

    Raises:
        CryptoError: Wrong key, malformed input, or tampered data.
    """
    if len(master_key) != MASTER_KEY_SIZE:
        raise CryptoError(f"Master key must be {MASTER_KEY_SIZE} bytes, got {len(master_key)}")

    try:
        sealed = base64.b64decode(ciphertext_b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError("Ciphertext is not valid base64") from e

    if len(sealed) <= NONCE_SIZE:
        raise CryptoError("Ciphertext is too short")

    try:
        plaintext = SecretBox(master_key).decrypt(sealed)
    except NaclCryptoError as e:
        logger.error("decryption_failed", ciphertext_length=len(sealed))
        raise CryptoError("Decryption failed") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted key is not valid UTF-8") from e


def encrypt_api_key(plaintext: str) -> str:
    """Encrypt an API key with the configured master key."""
    return encrypt(plaintext, require_master_key())


def decrypt_api_key(ciphertext_b64: str) -> str:
    """Decrypt a stored API key with the configured master key."""
    return decrypt(ciphertext_b64, require_master_key())
