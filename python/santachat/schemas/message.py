"""Message and read-state Pydantic schemas.

Wire fields are camelCase (``toId``, ``clientMessageId``); Python attributes
are snake_case. Request fields are loosely typed on purpose: the send
service validates them itself so each failure gets its own error code
instead of a generic 400.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel

from santachat.timeutil import format_iso

CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Request Schemas
# =============================================================================


class SendMessageRequest(BaseModel):
    """Request body for POST /messages/send."""

    to_id: Any = None
    content: Any = None
    conversation_id: Any = None
    client_message_id: Any = None
    client_created_at: Any = None

    model_config = CAMEL_CONFIG


# =============================================================================
# Response Schemas
# =============================================================================


class MessageOut(BaseModel):
    """A persisted message as returned to clients.

    ``timestamp`` is the server's send time; ``clientCreatedAt`` is echoed
    back exactly as the client sent it.
    """

    id: str
    from_id: str
    to_id: str
    content: str
    timestamp: datetime
    conversation_id: str | None = None
    client_message_id: str | None = None
    client_created_at: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return format_iso(value)


class ReadStateOut(BaseModel):
    """A user's read watermark for one conversation."""

    conversation_id: str
    last_read_at: str

    model_config = CAMEL_CONFIG


class UnreadCountsOut(BaseModel):
    """Unread counts for both directed conversations between the viewer and another user."""

    other_user_id: str
    as_santa: int
    as_recipient: int
    santa_conversation_id: str
    recipient_conversation_id: str

    model_config = CAMEL_CONFIG


def dump_message(message: Any) -> dict[str, Any]:
    """Serialize an ORM message (or anything with the same attributes) for the wire."""
    return MessageOut.model_validate(message).model_dump(by_alias=True, mode="json")
