"""Message listing service.

Read paths over the durable message store:
- list_messages_for_user: the viewer's feed, newest first
- list_conversation: one directed conversation between the viewer and
  another user, oldest first, legacy messages included
"""

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from santachat.db.models import Message
from santachat.routing import filter_for_conversation

DEFAULT_FEED_LIMIT = 200


def list_messages_for_user(
    db: Session, user_id: str, limit: int = DEFAULT_FEED_LIMIT
) -> list[Message]:
    """Messages the user sent or received, newest first."""
    stmt = (
        select(Message)
        .where(or_(Message.from_id == user_id, Message.to_id == user_id))
        .order_by(Message.timestamp.desc(), Message.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt))


def list_pair_messages(db: Session, user_a: str, user_b: str) -> list[Message]:
    """Every message exchanged between two users, either direction, any conversation."""
    stmt = select(Message).where(
        or_(
            and_(Message.from_id == user_a, Message.to_id == user_b),
            and_(Message.from_id == user_b, Message.to_id == user_a),
        )
    )
    return list(db.scalars(stmt))


def list_conversation(
    db: Session, viewer_id: str, other_user_id: str, conversation_id: str | None
) -> list[Message]:
    """The pair's messages in one conversation, oldest first.

    Scoping is done by filter_for_conversation so that the server and the
    client agree on which legacy messages appear.
    """
    messages = list_pair_messages(db, viewer_id, other_user_id)
    return filter_for_conversation(messages, viewer_id, other_user_id, conversation_id)
