"""Application factory for the santachat API.

Middleware runs in reverse order of registration, so the request-id
middleware is added last by the entrypoint and wraps everything else:

1. RequestIDMiddleware binds the request id and times the request
2. AuthMiddleware verifies the bearer token and sets the viewer
3. The route handler runs

An unconfigured deployment still starts. Without identity settings every
protected path answers 503 E_AUTH_UNAVAILABLE; without DATABASE_URL every
store-backed path answers 503 E_SERVICE_UNAVAILABLE. Notifications go to
PUSH_WEBHOOK_URL through a shared httpx.Client when it is set and are only
logged otherwise.
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from santachat.api.routes import create_api_router
from santachat.auth.middleware import AuthMiddleware
from santachat.auth.verifier import JwksTokenVerifier, TokenVerifier
from santachat.config import Settings, get_settings
from santachat.errors import ApiError
from santachat.logging import configure_logging, get_logger
from santachat.middleware.request_id import RequestIDMiddleware
from santachat.responses import (
    api_error_handler,
    http_exception_handler,
    reject_malformed_json,
    unhandled_exception_handler,
    validation_error_handler,
)
from santachat.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    WebhookNotificationDispatcher,
)

configure_logging()

logger = get_logger(__name__)


def create_token_verifier() -> TokenVerifier | None:
    """The JWKS verifier, or None when identity settings are incomplete."""
    settings = get_settings()
    if not settings.auth_configured:
        logger.warning("auth_not_configured", env=settings.santachat_env.value)
        return None
    return JwksTokenVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


def _webhook_client(settings: Settings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(settings.push_timeout_s, connect=2.0),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Install a notification dispatcher unless one was injected."""
    settings = get_settings()
    http_client: httpx.Client | None = None

    if app.state.notification_dispatcher is None:
        if settings.push_webhook_url:
            http_client = _webhook_client(settings)
            app.state.notification_dispatcher = WebhookNotificationDispatcher(
                http_client, settings.push_webhook_url, timeout_s=settings.push_timeout_s
            )
            logger.info("push_webhook_enabled")
        else:
            app.state.notification_dispatcher = LoggingNotificationDispatcher()

    try:
        yield
    finally:
        if http_client is not None:
            http_client.close()
            logger.info("push_http_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier: TokenVerifier | None = None,
    notification_dispatcher: NotificationDispatcher | None = None,
) -> FastAPI:
    """Build the API application.

    Args:
        skip_auth_middleware: Leave routes unauthenticated (tests only).
        token_verifier: Replaces the JWKS verifier built from settings.
        notification_dispatcher: Replaces the dispatcher built at startup.
    """
    app = FastAPI(
        title="Santachat API",
        description="Message delivery and read state for Secret Santa pairs",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.notification_dispatcher = notification_dispatcher

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.middleware("http")(reject_malformed_json)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        verifier = token_verifier or create_token_verifier()
        app.add_middleware(AuthMiddleware, verifier=verifier)
        logger.info("auth_middleware_enabled", verifier_configured=verifier is not None)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Wrap the app in RequestIDMiddleware. Call after all other middleware."""
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
