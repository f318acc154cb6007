"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from santachat.api.routes.health import router as health_router
from santachat.api.routes.messages import router as messages_router
from santachat.api.routes.read_state import router as read_state_router


def create_api_router() -> APIRouter:
    """Create the API router with all routes registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(messages_router, tags=["messages"])
    api_router.include_router(read_state_router, tags=["read-state"])
    return api_router


__all__ = ["create_api_router"]
