"""Test data factories.

Centralizes helpers that create rows (and row-shaped objects) for tests,
so individual tests don't need to track NOT NULL columns.

When a column is added or a constraint changes, update the relevant
factory here, not in N test files.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from santachat.db.models import LastRead, Message, User
from santachat.timeutil import EPOCH, utc_now

# =============================================================================
# Users
# =============================================================================


def create_user(session: Session, user_id: str | None = None, **fields: Any) -> User:
    user = User(id=user_id or str(uuid.uuid4()), **fields)
    session.add(user)
    session.commit()
    return user


# =============================================================================
# Messages
# =============================================================================


def create_message(
    session: Session,
    from_id: str,
    to_id: str,
    content: str = "hello",
    conversation_id: str | None = None,
    timestamp: datetime | None = None,
    message_id: str | None = None,
    client_created_at: str | None = None,
) -> Message:
    """Insert a stored message. ``conversation_id=None`` makes it a legacy message."""
    message = Message(
        id=message_id or str(uuid.uuid4()),
        from_id=from_id,
        to_id=to_id,
        content=content,
        timestamp=timestamp or utc_now(),
        conversation_id=conversation_id,
        client_message_id=message_id,
        client_created_at=client_created_at,
    )
    session.add(message)
    session.commit()
    return message


def create_last_read(
    session: Session, user_id: str, conversation_id: str, last_read_at: datetime
) -> LastRead:
    record = LastRead(user_id=user_id, conversation_id=conversation_id, last_read_at=last_read_at)
    session.add(record)
    session.commit()
    return record


# =============================================================================
# Plain message objects (no database)
# =============================================================================


@dataclass
class RoutedMessage:
    """Anything with these attributes can be routed and counted."""

    from_id: str
    to_id: str
    conversation_id: str | None
    timestamp: Any
    content: str = "hello"


def at(seconds: float) -> datetime:
    """A timestamp ``seconds`` after a fixed reference point."""
    return EPOCH + timedelta(days=20000, seconds=seconds)
