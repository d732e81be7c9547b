"""Token verification implementations.

Provides:
- TokenVerifier: Protocol for token verification
- Hs256TokenVerifier: Shared-secret verifier for bearer and WebSocket tokens
- mint_access_token: Issue a token for a user id (tooling and tests)
"""

import logging
import time
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt.exceptions import DecodeError, ExpiredSignatureError, InvalidSignatureError, InvalidTokenError

from polychat.config import get_settings
from polychat.errors import UnauthorizedError

logger = logging.getLogger(__name__)

# Clock skew allowance in seconds
CLOCK_SKEW_SECONDS = 60

ALGORITHM = "HS256"


class TokenVerifier(Protocol):
    """Protocol for token verification.

    Implementations must verify JWT tokens and return decoded claims.
    """

    def verify(self, token: str) -> dict[str, Any]:
        """Verify token and return decoded claims.

        Raises:
            UnauthorizedError: Token is invalid, expired, or malformed.
        """
        ...


class Hs256TokenVerifier:
    """Verifier for HS256 tokens signed with the service secret.

    Validates:
    - Signature with the shared secret
    - exp with ±60s clock skew
    - sub must be a valid UUID
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = secret

    def verify(self, token: str) -> dict[str, Any]:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "sub"]},
            )
        except ExpiredSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "expired_token"})
            raise UnauthorizedError("Token expired") from e
        except InvalidSignatureError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_signature"})
            raise UnauthorizedError("Invalid token signature") from e
        except DecodeError as e:
            logger.warning("auth_failure", extra={"reason": "decode_error"})
            raise UnauthorizedError("Invalid token format") from e
        except InvalidTokenError as e:
            logger.warning("auth_failure", extra={"reason": "invalid_token"})
            raise UnauthorizedError("Invalid token") from e

        try:
            UUID(str(payload["sub"]))
        except (ValueError, TypeError) as e:
            logger.warning("auth_failure", extra={"reason": "invalid_sub"})
            raise UnauthorizedError("Invalid token: sub is not a valid UUID") from e

        return payload


def mint_access_token(user_id: UUID, secret: str, ttl_seconds: int | None = None) -> str:
    """Issue an HS256 access token whose subject is user_id.

    ttl_seconds defaults to JWT_TTL_SECONDS from settings.
    """
    if ttl_seconds is None:
        ttl_seconds = get_settings().jwt_ttl_seconds
    now = int(time.time())
    claims = {"sub": str(user_id), "iat": now, "exp": now + ttl_seconds}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)
