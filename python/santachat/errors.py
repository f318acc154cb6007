"""API error definitions and transport error normalization.

All API errors are defined here with their corresponding HTTP status codes.

ErrorKind is the closed set of failure categories that retry and
classification logic works with. normalize_error() is the only place that
looks at transport-specific error shapes (HTTP status codes, httpx and
SQLAlchemy exceptions, numeric or string gRPC-style codes).
"""

from enum import Enum
from typing import Any

import httpx
from sqlalchemy import exc as sa_exc


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_UNKNOWN_SENDER = "E_UNKNOWN_SENDER"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_MESSAGE_EMPTY = "E_MESSAGE_EMPTY"
    E_MESSAGE_TOO_LONG = "E_MESSAGE_TOO_LONG"
    E_INVALID_CLIENT_MESSAGE_ID = "E_INVALID_CLIENT_MESSAGE_ID"
    E_INVALID_CLIENT_CREATED_AT = "E_INVALID_CLIENT_CREATED_AT"
    E_RECIPIENT_NOT_FOUND = "E_RECIPIENT_NOT_FOUND"

    # Conflict errors (409)
    E_MESSAGE_ID_CONFLICT = "E_MESSAGE_ID_CONFLICT"

    # Server errors
    E_INTERNAL = "E_INTERNAL"  # 500
    E_WRITE_FAILED = "E_WRITE_FAILED"  # 500
    E_SERVICE_UNAVAILABLE = "E_SERVICE_UNAVAILABLE"  # 503
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_UNKNOWN_SENDER: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_MESSAGE_EMPTY: 400,
    ApiErrorCode.E_MESSAGE_TOO_LONG: 400,
    ApiErrorCode.E_INVALID_CLIENT_MESSAGE_ID: 400,
    ApiErrorCode.E_INVALID_CLIENT_CREATED_AT: 400,
    ApiErrorCode.E_RECIPIENT_NOT_FOUND: 400,
    ApiErrorCode.E_MESSAGE_ID_CONFLICT: 409,
    ApiErrorCode.E_INTERNAL: 500,
    ApiErrorCode.E_WRITE_FAILED: 500,
    ApiErrorCode.E_SERVICE_UNAVAILABLE: 503,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
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
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class TransientStorageError(Exception):
    """The durable store kept failing with transient errors until retries ran out."""

    def __init__(self, message: str, attempts: int):
        self.attempts = attempts
        super().__init__(message)


class InvalidPayload(ValueError):
    """An outbox enqueue was missing a user id, a recipient, or non-blank content."""


# =============================================================================
# Error kinds
# =============================================================================


class ErrorKind(str, Enum):
    """Normalized failure categories."""

    ALREADY_EXISTS = "already_exists"
    TRANSIENT = "transient"
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    INVALID = "invalid"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.TRANSIENT,
        ErrorKind.NETWORK,
        ErrorKind.TIMEOUT,
        ErrorKind.RATE_LIMITED,
        ErrorKind.AUTH_EXPIRED,
        ErrorKind.SERVER_ERROR,
        # Unclassified transport failures are treated like network errors
        ErrorKind.UNKNOWN,
    }
)

# gRPC status codes, as reported by document stores and their client libraries
_GRPC_CODE_KINDS: dict[int, ErrorKind] = {
    3: ErrorKind.INVALID,  # INVALID_ARGUMENT
    4: ErrorKind.TRANSIENT,  # DEADLINE_EXCEEDED
    5: ErrorKind.NOT_FOUND,
    6: ErrorKind.ALREADY_EXISTS,
    7: ErrorKind.FORBIDDEN,  # PERMISSION_DENIED
    8: ErrorKind.TRANSIENT,  # RESOURCE_EXHAUSTED
    10: ErrorKind.TRANSIENT,  # ABORTED
    13: ErrorKind.TRANSIENT,  # INTERNAL
    14: ErrorKind.TRANSIENT,  # UNAVAILABLE
    16: ErrorKind.AUTH_EXPIRED,  # UNAUTHENTICATED
}

_NAMED_CODE_KINDS: dict[str, ErrorKind] = {
    "invalid-argument": ErrorKind.INVALID,
    "deadline-exceeded": ErrorKind.TRANSIENT,
    "not-found": ErrorKind.NOT_FOUND,
    "already-exists": ErrorKind.ALREADY_EXISTS,
    "permission-denied": ErrorKind.FORBIDDEN,
    "resource-exhausted": ErrorKind.TRANSIENT,
    "aborted": ErrorKind.TRANSIENT,
    "internal": ErrorKind.TRANSIENT,
    "unavailable": ErrorKind.TRANSIENT,
    "unauthenticated": ErrorKind.AUTH_EXPIRED,
    "id-token-expired": ErrorKind.AUTH_EXPIRED,
    "network-request-failed": ErrorKind.NETWORK,
}


def kind_for_status(status_code: int) -> ErrorKind:
    """Classify an HTTP response status code.

    - 401 → AUTH_EXPIRED (stale credential, refresh and retry)
    - 408 → TIMEOUT, 425 → TRANSIENT, 429 → RATE_LIMITED
    - 400/403/404/409 → INVALID/FORBIDDEN/NOT_FOUND/CONFLICT
    - 5xx → SERVER_ERROR
    - any other 4xx → INVALID
    """
    if status_code == 401:
        return ErrorKind.AUTH_EXPIRED
    if status_code == 403:
        return ErrorKind.FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code == 425:
        return ErrorKind.TRANSIENT
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.SERVER_ERROR
    if 400 <= status_code < 500:
        return ErrorKind.INVALID
    return ErrorKind.UNKNOWN


def _kind_for_code(code: int | str) -> ErrorKind:
    if isinstance(code, bool):
        return ErrorKind.UNKNOWN

    if isinstance(code, int):
        if code >= 100:
            return kind_for_status(code)
        return _GRPC_CODE_KINDS.get(code, ErrorKind.UNKNOWN)

    name = code.strip().lower()
    # "store/already-exists" and "auth/id-token-expired" style namespaces
    if "/" in name:
        name = name.rsplit("/", 1)[-1]
    name = name.replace("_", "-")

    if name.isdigit():
        return _kind_for_code(int(name))

    return _NAMED_CODE_KINDS.get(name, ErrorKind.UNKNOWN)


def normalize_error(error: Any) -> ErrorKind:
    """Map any transport-specific error representation to an ErrorKind.

    Accepts HTTP status codes, numeric or string codes, httpx and SQLAlchemy
    exceptions, and arbitrary exceptions carrying a ``code`` or
    ``status_code`` attribute.
    """
    if error is None:
        return ErrorKind.UNKNOWN

    if isinstance(error, ErrorKind):
        return error

    if isinstance(error, (int, str)):
        return _kind_for_code(error)

    # httpx
    if isinstance(error, httpx.HTTPStatusError):
        return kind_for_status(error.response.status_code)
    if isinstance(error, httpx.TimeoutException):
        return ErrorKind.TIMEOUT
    if isinstance(error, httpx.TransportError):
        return ErrorKind.NETWORK

    # SQLAlchemy: a duplicate primary key is the store's "already exists"
    if isinstance(error, sa_exc.IntegrityError):
        return ErrorKind.ALREADY_EXISTS
    if isinstance(error, (sa_exc.OperationalError, sa_exc.TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return ErrorKind.TRANSIENT

    if isinstance(error, ApiError):
        return kind_for_status(error.status_code)

    code = getattr(error, "code", None)
    if callable(code):
        # grpc.RpcError exposes code() returning a StatusCode enum
        try:
            code = code()
        except Exception:
            code = None
        code = getattr(code, "value", code)
        if isinstance(code, tuple):
            code = code[0]
    if isinstance(code, (int, str)):
        kind = _kind_for_code(code)
        if kind is not ErrorKind.UNKNOWN:
            return kind

    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return kind_for_status(status_code)

    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorKind.NETWORK

    return ErrorKind.UNKNOWN


def is_retryable(kind: ErrorKind) -> bool:
    """Whether a failure of this kind may succeed if attempted again later."""
    return kind in RETRYABLE_KINDS
