"""FastAPI dependencies for route handlers."""

from fastapi import Request

from santachat.config import Settings, get_settings
from santachat.db.session import get_db, get_session_factory
from santachat.services.notifications import NotificationDispatcher

__all__ = ["get_db", "get_app_settings", "get_notification_dispatcher", "get_session_factory"]


def get_app_settings() -> Settings:
    return get_settings()


def get_notification_dispatcher(request: Request) -> NotificationDispatcher | None:
    """The dispatcher created at startup, or None if the app was built without one."""
    return getattr(request.app.state, "notification_dispatcher", None)
