"""Send message service.

Validates a send request, resolves sender and recipient, writes the message
through the idempotent writer, and fires the new-message notification.

Validation order (first failure wins):
1. toId present                    → E_INVALID_REQUEST
2. content non-empty after trim    → E_MESSAGE_EMPTY
3. content within the length limit → E_MESSAGE_TOO_LONG
4. clientMessageId is a UUID       → E_INVALID_CLIENT_MESSAGE_ID
5. clientCreatedAt is ISO 8601     → E_INVALID_CLIENT_CREATED_AT
6. sender is a known user          → E_UNKNOWN_SENDER (403)
7. recipient exists                → E_RECIPIENT_NOT_FOUND (400)

Outcomes:
- created: 200, notification dispatched (fail-open)
- replayed: 200 with replayed=true, no notification
- conflict: E_MESSAGE_ID_CONFLICT (409)
- transient failures outlasting retries: E_WRITE_FAILED (500)
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from santachat.config import Settings
from santachat.db.models import Message, User
from santachat.errors import (
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    TransientStorageError,
)
from santachat.logging import get_logger, set_client_message_id
from santachat.schemas.message import SendMessageRequest
from santachat.services.message_writer import MessageData, write_message
from santachat.services.notifications import (
    NotificationDispatcher,
    build_notification,
    notify_fail_open,
)
from santachat.timeutil import parse_iso, utc_now

logger = get_logger(__name__)

CLIENT_MESSAGE_ID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


@dataclass
class SendOutcome:
    message: Message
    created: bool
    replayed: bool = False


def _trimmed(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_valid_client_message_id(value: str) -> bool:
    return bool(CLIENT_MESSAGE_ID_PATTERN.match(value))


def validate_send_request(request: SendMessageRequest, max_length: int) -> dict[str, Any]:
    """Normalize and validate the request body.

    Returns:
        Dict of cleaned values: to_id, content, conversation_id,
        client_message_id, client_created_at (the last three may be None).

    Raises:
        InvalidRequestError: With the code of the first failed check.
    """
    to_id = _trimmed(request.to_id)
    content = _trimmed(request.content)
    conversation_id = _trimmed(request.conversation_id) or None
    client_message_id = _trimmed(request.client_message_id) or None
    client_created_at = _trimmed(request.client_created_at) or None

    if not to_id:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Recipient is required")

    if not content:
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_EMPTY, "Message cannot be empty")

    if len(content) > max_length:
        raise InvalidRequestError(ApiErrorCode.E_MESSAGE_TOO_LONG, "Message is too long")

    if client_message_id and not is_valid_client_message_id(client_message_id):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CLIENT_MESSAGE_ID, "clientMessageId must be a valid UUID"
        )

    if client_created_at and parse_iso(client_created_at) is None:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CLIENT_CREATED_AT, "clientCreatedAt must be an ISO timestamp"
        )

    return {
        "to_id": to_id,
        "content": content,
        "conversation_id": conversation_id,
        "client_message_id": client_message_id,
        "client_created_at": client_created_at,
    }


def send_message(
    db: Session,
    sender_id: str,
    request: SendMessageRequest,
    settings: Settings,
    dispatcher: NotificationDispatcher | None = None,
) -> SendOutcome:
    """Persist a message exactly once per client message id.

    Raises:
        ApiError: Validation, authorization, conflict, or write failure.
    """
    values = validate_send_request(request, settings.max_message_length)

    client_message_id = values["client_message_id"]
    if client_message_id:
        set_client_message_id(client_message_id)

    if db.get(User, sender_id) is None:
        logger.warning("send_unknown_sender", sender_id=sender_id)
        raise ForbiddenError(ApiErrorCode.E_UNKNOWN_SENDER, "Unauthorized sender")

    if db.get(User, values["to_id"]) is None:
        raise InvalidRequestError(ApiErrorCode.E_RECIPIENT_NOT_FOUND, "Recipient not found")

    data = MessageData(
        id=client_message_id or str(uuid.uuid4()),
        from_id=sender_id,
        to_id=values["to_id"],
        content=values["content"],
        timestamp=utc_now(),
        conversation_id=values["conversation_id"],
        client_message_id=client_message_id,
        client_created_at=values["client_created_at"],
    )

    try:
        result = write_message(
            db,
            data,
            max_attempts=settings.message_write_max_attempts,
            retry_delay_s=settings.message_write_retry_delay_s,
        )
    except TransientStorageError as e:
        raise ApiError(ApiErrorCode.E_WRITE_FAILED, "Failed to send message") from e

    if result.conflict:
        raise ApiError(ApiErrorCode.E_MESSAGE_ID_CONFLICT, "Message id conflict")

    # Replays skip the notification so a retried send never pings twice
    if result.created:
        notify_fail_open(
            dispatcher,
            build_notification(
                to_user_id=data.to_id,
                conversation_id=data.conversation_id,
                from_user_id=data.from_id,
            ),
        )

    return SendOutcome(message=result.message, created=result.created, replayed=result.replayed)
