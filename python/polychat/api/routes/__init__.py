"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from polychat.api.routes.chats import router as chats_router
from polychat.api.routes.health import router as health_router
from polychat.api.routes.keys import router as keys_router
from polychat.api.routes.messages import router as messages_router
from polychat.api.routes.models import router as models_router
from polychat.api.routes.settings import router as settings_router
from polychat.api.routes.stream import router as stream_router
from polychat.api.routes.ws import router as ws_router


def create_api_router() -> APIRouter:
    """Create and configure the API router.

    Returns:
        Configured APIRouter with all routes registered.
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(chats_router)
    api_router.include_router(messages_router)
    api_router.include_router(stream_router)
    api_router.include_router(keys_router)
    api_router.include_router(models_router)
    api_router.include_router(settings_router)
    api_router.include_router(ws_router)
    return api_router


__all__ = ["create_api_router"]
