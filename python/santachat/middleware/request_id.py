"""X-Request-ID middleware for request correlation and access logging.

Every response carries an ``X-Request-ID``: a valid incoming id is echoed
(UUIDs lowercased), anything else is replaced by a fresh UUID4. When the
outbox drainer sends ``X-Client-Message-ID``, it is bound to the logging
context too, so one queued message can be followed from the client's drain
attempts through the server-side write.

Must be added LAST so it runs FIRST (outermost); auth failures then still
carry the header.
"""

import re
import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from santachat.logging import (
    clear_request_context,
    get_logger,
    set_client_message_id,
    set_request_context,
)

REQUEST_ID_HEADER = "X-Request-ID"
CLIENT_MESSAGE_ID_HEADER = "X-Client-Message-ID"
MAX_REQUEST_ID_LENGTH = 128

# Non-UUID ids: alphanumeric, dots, hyphens, underscores
VALID_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")

UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

logger = get_logger(__name__)


def is_valid_uuid(value: str) -> bool:
    return bool(UUID_PATTERN.match(value))


def is_valid_request_id(value: str) -> bool:
    """A request id is at most 128 bytes and either a UUID or a plain token."""
    if len(value.encode("utf-8")) > MAX_REQUEST_ID_LENGTH:
        return False
    return is_valid_uuid(value) or bool(VALID_REQUEST_ID_PATTERN.match(value))


def resolve_request_id(incoming: str | None) -> str:
    """Normalize a usable incoming id or mint a new one."""
    if incoming and is_valid_request_id(incoming):
        return incoming.lower() if is_valid_uuid(incoming) else incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns request ids, binds logging context, and logs one access entry per request."""

    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        start_time = time.monotonic()

        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        client_message_id = request.headers.get(CLIENT_MESSAGE_ID_HEADER)
        if client_message_id and VALID_REQUEST_ID_PATTERN.match(client_message_id):
            set_client_message_id(client_message_id)

        try:
            response = await call_next(request)

            viewer = getattr(request.state, "viewer", None)
            if viewer is not None:
                set_request_context(request_id, viewer.user_id)

            response.headers[REQUEST_ID_HEADER] = request_id

            if self.log_requests:
                logger.info(
                    "request_completed",
                    status_code=response.status_code,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                )

            return response

        except Exception:
            logger.exception("request_failed")
            raise

        finally:
            clear_request_context()
