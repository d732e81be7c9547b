"""FastAPI dependencies for route handlers.

Common dependencies like database sessions and the shared app-state objects.
"""

from fastapi import Request

from polychat.db.session import get_db, get_session_factory
from polychat.services.broadcast import BroadcastHub
from polychat.services.llm import LLMRouter

__all__ = ["get_broadcast_hub", "get_db", "get_llm_router", "get_session_factory"]


def get_llm_router(request: Request) -> LLMRouter:
    """Get the shared LLM router from app state.

    The router wraps the process-wide httpx.AsyncClient created in the
    lifespan, so every provider call shares one connection pool.
    """
    return request.app.state.llm_router


def get_broadcast_hub(request: Request) -> BroadcastHub:
    """Get the process-wide broadcast hub from app state."""
    return request.app.state.broadcast_hub
