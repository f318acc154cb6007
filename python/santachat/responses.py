"""Response envelopes and the exception handlers that produce them.

Reads answer ``{"data": ...}``. Failures answer
``{"error": {"code": "E_...", "message": "...", "request_id": "..."}}``.
The send endpoint answers ``{"success": true, "message": ..., "replayed"?: true}``
so that a retried delivery can tell a replay from a fresh write.
"""

import json
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from santachat.errors import ApiError, ApiErrorCode
from santachat.logging import get_logger, get_request_id

logger = get_logger(__name__)

# Starlette raises HTTPException for routing failures (unknown path, wrong method)
_HTTP_STATUS_CODES = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def send_response(message: dict[str, Any], replayed: bool = False) -> dict[str, Any]:
    """Body for a successful send; ``replayed`` is omitted on fresh writes."""
    body: dict[str, Any] = {"success": True, "message": message}
    if replayed:
        body["replayed"] = True
    return body


def error_response(code: ApiErrorCode, message: str) -> dict[str, Any]:
    """Error envelope, tagged with the current request id when there is one."""
    error: dict[str, Any] = {"code": code.value, "message": message}
    request_id = get_request_id()
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_json(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_response(code, message))


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error_json(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    code = _HTTP_STATUS_CODES.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    return _error_json(exc.status_code, code, str(exc.detail) if exc.detail else "An error occurred")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the failure and answer a bare 500; details never reach the client."""
    logger.exception("unhandled_exception", error=str(exc))
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Schema violations in a request body answer 400, not FastAPI's default 422."""
    return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, "Invalid request body")


async def reject_malformed_json(request: Request, call_next):
    """HTTP middleware: answer 400 for a JSON body that does not parse.

    Runs before routing, so the route never sees an undecodable payload.
    """
    if request.method in ("POST", "PUT", "PATCH") and "application/json" in request.headers.get(
        "content-type", ""
    ):
        body = await request.body()
        if body:
            try:
                json.loads(body)
            except ValueError:
                return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body")
    return await call_next(request)
