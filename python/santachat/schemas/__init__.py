"""Pydantic schemas for request/response models."""

from santachat.schemas.message import (
    MessageOut,
    ReadStateOut,
    SendMessageRequest,
    UnreadCountsOut,
    dump_message,
)

__all__ = [
    "SendMessageRequest",
    "MessageOut",
    "ReadStateOut",
    "UnreadCountsOut",
    "dump_message",
]
