"""New-message notification dispatch.

Notifications are a side effect of a successful write and never decide
its outcome: callers dispatch through notify_fail_open(), which logs and
swallows dispatcher failures.

Dispatchers:
- LoggingNotificationDispatcher: records the notification only (default when
  no webhook is configured).
- WebhookNotificationDispatcher: POSTs the notification as JSON to a push
  gateway using a shared httpx client.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import httpx

from santachat.logging import get_logger
from santachat.routing import sender_role

logger = get_logger(__name__)

NOTIFICATION_TITLE = "Secret Santa"
GENERIC_MESSAGE_BODY = "You have a new message"
SANTA_MESSAGE_BODY = "You have a new message from Santa"
RECIPIENT_MESSAGE_BODY = "You have a new message from your recipient"


@dataclass(frozen=True)
class IncomingMessageNotification:
    to_user_id: str
    title: str
    body: str
    tag: str
    data: dict[str, str] = field(default_factory=dict)


def notification_body(role: str | None) -> str:
    if role == "santa":
        return SANTA_MESSAGE_BODY
    if role == "recipient":
        return RECIPIENT_MESSAGE_BODY
    return GENERIC_MESSAGE_BODY


def build_notification(
    to_user_id: str,
    conversation_id: str | None,
    from_user_id: str | None,
) -> IncomingMessageNotification:
    """Build the push payload, naming the sender's role without revealing identity."""
    role = sender_role(conversation_id, from_user_id)
    body = notification_body(role)
    return IncomingMessageNotification(
        to_user_id=to_user_id,
        title=NOTIFICATION_TITLE,
        body=body,
        tag=f"conversation-{conversation_id}" if conversation_id else "conversation",
        data={
            "type": "incoming_message",
            "conversationId": conversation_id or "",
            "senderRole": role or "",
            "notificationBody": body,
        },
    )


class NotificationDispatcher(Protocol):
    def dispatch(self, notification: IncomingMessageNotification) -> None: ...


class LoggingNotificationDispatcher:
    def dispatch(self, notification: IncomingMessageNotification) -> None:
        logger.info(
            "push_dispatch_logged",
            to_user_id=notification.to_user_id,
            tag=notification.tag,
            sender_role=notification.data.get("senderRole") or None,
        )


class WebhookNotificationDispatcher:
    """Delivers notifications to an HTTP push gateway."""

    def __init__(self, client: httpx.Client, url: str, timeout_s: float = 5.0):
        self.client = client
        self.url = url
        self.timeout_s = timeout_s

    def dispatch(self, notification: IncomingMessageNotification) -> None:
        payload: dict[str, Any] = asdict(notification)
        response = self.client.post(self.url, json=payload, timeout=self.timeout_s)
        response.raise_for_status()
        logger.info(
            "push_dispatched",
            to_user_id=notification.to_user_id,
            status_code=response.status_code,
        )


def notify_fail_open(
    dispatcher: NotificationDispatcher | None,
    notification: IncomingMessageNotification,
) -> bool:
    """Dispatch a notification, logging instead of raising on failure.

    Returns:
        True if the dispatcher accepted the notification.
    """
    if dispatcher is None:
        return False
    try:
        dispatcher.dispatch(notification)
    except Exception as e:
        logger.warning(
            "push_dispatch_failed",
            to_user_id=notification.to_user_id,
            error_type=type(e).__name__,
            error=str(e),
        )
        return False
    return True
