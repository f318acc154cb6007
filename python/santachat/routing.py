"""Conversation identifiers for Secret Santa pairs.

Every pair of users can hold two conversations: one where A is B's Santa and
one where B is A's Santa. Identifiers are role-tagged so that swapping the two
ids yields the other conversation:

    conversation_id("A", "B") == "santa_A_recipient_B"
    conversation_id("B", "A") == "santa_B_recipient_A"

Messages written before conversations were scoped carry no identifier. Such
legacy messages match BOTH conversations between the same pair, so they can
show up (and be counted unread) in both. This ambiguity is deliberate until
legacy data is migrated.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from santachat.timeutil import EPOCH, to_datetime

SANTA_PREFIX = "santa_"
RECIPIENT_MARKER = "_recipient_"


class RoutableMessage(Protocol):
    from_id: str
    to_id: str
    conversation_id: str | None
    timestamp: Any


def conversation_id(santa_id: str | None, recipient_id: str | None) -> str | None:
    """Build the deterministic id of the conversation where santa_id gifts recipient_id."""
    if not santa_id or not recipient_id:
        return None
    return f"{SANTA_PREFIX}{santa_id}{RECIPIENT_MARKER}{recipient_id}"


def parse_conversation_id(value: str | None) -> tuple[str, str] | None:
    """Split a conversation id into (santa_id, recipient_id).

    Returns None for legacy or malformed ids.
    """
    if not value or not value.startswith(SANTA_PREFIX):
        return None
    parts = value[len(SANTA_PREFIX) :].split(RECIPIENT_MARKER)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        return None
    return parts[0], parts[1]


def legacy_conversation_id(user_a: str, user_b: str) -> str:
    """Order-independent pair key used by records that predate role-tagged ids."""
    return "_".join(sorted((user_a, user_b)))


def sender_role(conversation: str | None, from_user_id: str | None) -> str | None:
    """Return "santa" or "recipient" for the sender, or None when unknown."""
    parsed = parse_conversation_id(conversation)
    if parsed is None or not from_user_id:
        return None
    santa_id, recipient_id = parsed
    if from_user_id == santa_id:
        return "santa"
    if from_user_id == recipient_id:
        return "recipient"
    return None


def is_legacy(message: RoutableMessage) -> bool:
    """A message without a conversation id predates conversation scoping."""
    return not message.conversation_id


def involves_pair(message: RoutableMessage, user_a: str, user_b: str) -> bool:
    return (message.from_id == user_a and message.to_id == user_b) or (
        message.from_id == user_b and message.to_id == user_a
    )


def belongs_to_conversation(message: RoutableMessage, target_conversation_id: str | None) -> bool:
    """Exact id match, or a legacy message (which matches any conversation)."""
    if is_legacy(message):
        return True
    return message.conversation_id == target_conversation_id


def _sort_key(message: RoutableMessage) -> datetime:
    return to_datetime(message.timestamp) or EPOCH


def filter_for_conversation(
    messages: Iterable[RoutableMessage],
    user_a: str,
    user_b: str,
    target_conversation_id: str | None,
) -> list[RoutableMessage]:
    """Keep the pair's messages that belong to the target conversation, oldest first."""
    if not user_a or not user_b:
        return []

    matching = [
        message
        for message in messages
        if involves_pair(message, user_a, user_b)
        and belongs_to_conversation(message, target_conversation_id)
    ]
    return sorted(matching, key=_sort_key)
