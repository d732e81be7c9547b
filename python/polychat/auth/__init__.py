"""Authentication module.

This module provides:
- Token verification (HS256 shared-secret verifier) and token minting
- Auth middleware for FastAPI
- Request state with viewer identity
"""

from polychat.auth.middleware import AuthMiddleware, Viewer, get_viewer
from polychat.auth.verifier import Hs256TokenVerifier, TokenVerifier, mint_access_token

__all__ = [
    "AuthMiddleware",
    "Viewer",
    "get_viewer",
    "Hs256TokenVerifier",
    "TokenVerifier",
    "mint_access_token",
]
