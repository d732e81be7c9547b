"""FastAPI application creation and configuration.

This module creates and configures the FastAPI application instance.
It registers exception handlers, auth middleware, request-id middleware, and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST so it runs FIRST (outermost)
- This ensures all requests (including auth failures) get X-Request-ID

Actual execution order per request:
1. RequestIDMiddleware (sets request_id, starts timer)
2. AuthMiddleware (verifies auth, sets viewer)
3. Route handler
4. AuthMiddleware (returns response)
5. RequestIDMiddleware (logs, sets response header)

Shared resource lifecycle:
- httpx.AsyncClient is created at startup, stored in app.state
- LLMRouter wraps the shared client for connection pooling
- BroadcastHub is created at startup and closed at shutdown, after which
  pending detached tasks (title updates) are awaited
"""

import json
from contextlib import asynccontextmanager
from uuid import UUID

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from polychat.api.routes import create_api_router
from polychat.auth.middleware import AuthMiddleware
from polychat.auth.verifier import Hs256TokenVerifier, TokenVerifier
from polychat.config import get_settings
from polychat.db.session import get_session_factory
from polychat.errors import ApiError
from polychat.logging import configure_logging, get_logger
from polychat.middleware.request_id import RequestIDMiddleware
from polychat.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from polychat.services.broadcast import BroadcastHub
from polychat.services.chat_stream import drain_background_tasks
from polychat.services.llm import LLMRouter
from polychat.services.users import ensure_user

logger = get_logger(__name__)


def create_bootstrap_callback():
    """Create a bootstrap callback that creates its own database session.

    The callback is called by the auth middleware for each authenticated request.
    It creates a fresh database session, ensures the user row, and closes it.
    """
    session_factory = get_session_factory()

    def bootstrap(user_id: UUID) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id)
        finally:
            db.close()

    return bootstrap


def create_token_verifier() -> Hs256TokenVerifier:
    """Create the HS256 verifier shared by the bearer middleware and /ws."""
    return Hs256TokenVerifier(get_settings().jwt_secret)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle resources.

    - Creates shared httpx.AsyncClient for connection pooling
    - Initializes LLMRouter with provider feature flags
    - Creates the BroadcastHub
    - Cleans up on shutdown
    """
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.llm_timeout_seconds, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.llm_router = LLMRouter(
        app.state.httpx_client,
        provider_flags=settings.provider_flags,
        timeout_s=settings.llm_timeout_seconds,
    )
    app.state.broadcast_hub = BroadcastHub(settings.broadcast_capacity)

    logger.info(
        "app_started",
        providers=[p for p, enabled in settings.provider_flags.items() if enabled],
        broadcast_capacity=settings.broadcast_capacity,
    )

    yield

    await app.state.broadcast_hub.close()
    await drain_background_tasks()
    await app.state.httpx_client.aclose()
    logger.info("app_stopped")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()
    configure_logging(json_format=settings.log_json)

    app = FastAPI(
        title="Polychat API",
        description="Backend API for Polychat - multi-provider LLM chat",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    verifier = token_verifier or create_token_verifier()
    app.state.token_verifier = verifier

    # Register exception handlers
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(status_code=400, content=error_response("Invalid request body"))

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Reject malformed JSON bodies before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH"):
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400, content=error_response("Malformed JSON body")
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=verifier,
            bootstrap_callback=create_bootstrap_callback(),
        )
        logger.info("auth_middleware_enabled", env=settings.polychat_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    This should be called AFTER all other middleware is added, so it runs FIRST.
    This ensures every response includes X-Request-ID, including auth failures.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
