"""API error envelope and exception handlers.

Errors use a flat envelope: { "error": "<message>" }.
The request id travels in the X-Request-ID response header.
"""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from polychat.errors import ApiError
from polychat.logging import get_logger

logger = get_logger(__name__)


def error_response(message: str) -> dict[str, Any]:
    """Create an error response envelope.

    Args:
        message: Human-readable error message.

    Returns:
        Dict with "error" key containing the message.
    """
    return {"error": message}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    """Handle ApiError exceptions and return proper JSON response."""
    if exc.status_code >= 500:
        logger.error(
            "api_error",
            code=exc.code.value,
            status_code=exc.status_code,
            error_message=exc.message,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.message),
    )


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Handle FastAPI HTTPException and return proper JSON response."""
    status_to_message = {
        400: "Bad request",
        401: "Unauthorized",
        404: "Not Found",
        405: "Method Not Allowed",
        422: "Bad request",
    }
    message = str(exc.detail) if exc.detail else status_to_message.get(exc.status_code, "Error")
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(message),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unhandled exceptions and return 500.

    Logs the exception server-side but never leaks details to client.
    """
    logger.exception("unhandled_exception", error_type=type(exc).__name__)

    return JSONResponse(
        status_code=500,
        content=error_response("Internal Server Error"),
    )
