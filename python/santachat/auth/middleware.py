"""Bearer authentication for every non-public route.

AuthMiddleware resolves the caller to a Viewer and parks it on
``request.state``; routes read it back through the ``get_viewer`` dependency.
Whether the viewer is a known participant is left to the services, which
answer 403 for unknown users.
"""

from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from santachat.auth.verifier import TokenVerifier
from santachat.errors import ApiError, ApiErrorCode
from santachat.logging import get_logger
from santachat.responses import error_response

logger = get_logger(__name__)

PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json"})
BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class Viewer:
    """The authenticated caller. ``user_id`` is the token's ``sub`` claim."""

    user_id: str


def parse_bearer(header: str | None) -> str:
    """Pull the token out of an Authorization header value.

    Raises:
        ApiError(E_UNAUTHENTICATED): Header missing, not a bearer scheme, or empty.
    """
    if not header:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    if not header.lower().startswith(BEARER_PREFIX):
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format")
    token = header[len(BEARER_PREFIX) :].strip()
    if not token:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Invalid authorization header format")
    return token


class AuthMiddleware(BaseHTTPMiddleware):
    """Reject unauthenticated requests before they reach a route.

    With no verifier configured every protected path answers 503, so a
    deployment missing its identity settings fails closed.
    """

    def __init__(self, app: ASGIApp, verifier: TokenVerifier | None):
        super().__init__(app)
        self.verifier = verifier

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            if self.verifier is None:
                raise ApiError(ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication not configured")
            token = parse_bearer(request.headers.get("authorization"))
            claims = self.verifier.verify(token)
        except ApiError as e:
            logger.warning("auth_rejected", request_path=path, code=e.code.value)
            return JSONResponse(status_code=e.status_code, content=error_response(e.code, e.message))

        request.state.viewer = Viewer(user_id=claims["sub"])
        return await call_next(request)


def get_viewer(request: Request) -> Viewer:
    """Dependency returning the viewer set by AuthMiddleware."""
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer
