"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Ownership failures are always reported as not-found so that callers cannot
probe for chats they do not own.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"

    # Upstream vendor errors (status taken from the vendor)
    E_PROVIDER = "E_PROVIDER"

    # Server errors (500)
    E_INTERNAL = "E_INTERNAL"


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_PROVIDER: 502,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource absent or not owned by the caller."""

    def __init__(self, message: str = "Not Found"):
        super().__init__(ApiErrorCode.E_NOT_FOUND, message)


class UnauthorizedError(ApiError):
    """Missing or invalid credentials."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(ApiErrorCode.E_UNAUTHENTICATED, message)


class InvalidRequestError(ApiError):
    """Invalid input or a missing prerequisite such as an API key."""

    def __init__(self, message: str = "Bad request"):
        super().__init__(ApiErrorCode.E_INVALID_REQUEST, message)


class InternalError(ApiError):
    """Storage failure, decryption failure or unparseable vendor response."""

    def __init__(self, message: str = "Internal Server Error"):
        super().__init__(ApiErrorCode.E_INTERNAL, message)


class ProviderApiError(ApiError):
    """A vendor call failed.

    The response status is the vendor's own status code when it is a valid
    HTTP status, otherwise 502.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(ApiErrorCode.E_PROVIDER, message)
        if status_code is not None and 100 <= status_code <= 599:
            self.status_code = status_code
