"""Unread-count derivation from a message stream and a read watermark.

A watermark is the timestamp of the newest message a user is considered to
have seen in a conversation. Stores hand watermarks back in several shapes
(server timestamp objects, datetimes, ISO strings, or null while a server
timestamp is still pending); normalize_watermark() folds all of them into
one ISO string so consumers never branch on representation.
"""

from collections.abc import Iterable
from typing import Any

from santachat.routing import RoutableMessage, parse_conversation_id
from santachat.timeutil import EPOCH, EPOCH_ISO, format_iso, to_datetime


def normalize_watermark(raw: Any, fallback: str = EPOCH_ISO) -> str:
    """Return the watermark as a wire-format ISO string, or fallback when unusable."""
    value = to_datetime(raw)
    if value is None:
        return fallback
    return format_iso(value)


def later_watermark(current: str | None, candidate: str) -> str:
    """Pick whichever of two ISO watermarks is newer."""
    current_dt = to_datetime(current)
    candidate_dt = to_datetime(candidate)
    if current_dt is None:
        return candidate
    if candidate_dt is None or candidate_dt < current_dt:
        return current  # type: ignore[return-value]
    return candidate


def counts_toward(message: RoutableMessage, user_id: str, conversation_id: str | None) -> bool:
    """Whether a message could be unread for user_id in conversation_id.

    Scoped messages must match the conversation exactly. Legacy messages
    (no conversation id) count in every conversation the sender shares with
    the user, so old data is never silently hidden.
    """
    if message.from_id == user_id or message.to_id != user_id:
        return False

    if message.conversation_id:
        return message.conversation_id == conversation_id

    pair = parse_conversation_id(conversation_id)
    if pair is None:
        return True
    return message.from_id in pair


def derive_unread(
    messages: Iterable[RoutableMessage],
    user_id: str,
    conversation_id: str | None,
    watermark: Any,
) -> int:
    """Count messages in the conversation, sent by someone else, newer than watermark."""
    threshold = to_datetime(watermark) or EPOCH
    count = 0
    for message in messages:
        if not counts_toward(message, user_id, conversation_id):
            continue
        sent_at = to_datetime(message.timestamp)
        if sent_at is not None and sent_at > threshold:
            count += 1
    return count
