"""Durable read watermarks and server-side unread counts.

The durable watermark is always the server's clock at the time of the
write, never a client-supplied value. With the monotonic guard enabled
(default) a write never moves an existing watermark backward, so a node
with a lagging clock cannot resurrect unread badges.
"""

from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from santachat.db.models import LastRead, Message, User
from santachat.db.session import transaction
from santachat.errors import (
    ApiErrorCode,
    ErrorKind,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    normalize_error,
)
from santachat.logging import get_logger
from santachat.routing import conversation_id as build_conversation_id
from santachat.routing import parse_conversation_id
from santachat.timeutil import EPOCH_ISO, ensure_utc, format_iso, utc_now
from santachat.unread import derive_unread

logger = get_logger(__name__)


def check_conversation_access(user_id: str, conversation_id: str) -> None:
    """Reject blank ids and role-tagged ids the user is not part of.

    Ids that do not parse (legacy pair keys) are accepted as-is.
    """
    if not conversation_id or not conversation_id.strip():
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "conversationId is required")
    pair = parse_conversation_id(conversation_id)
    if pair is not None and user_id not in pair:
        raise ForbiddenError(message="Not a participant in this conversation")


def _load(db: Session, user_id: str, conversation_id: str) -> LastRead | None:
    return db.get(LastRead, (user_id, conversation_id), populate_existing=True)


def get_watermark(db: Session, user_id: str, conversation_id: str) -> str:
    """The user's watermark as an ISO string, or the epoch if never read."""
    record = _load(db, user_id, conversation_id)
    if record is None:
        return EPOCH_ISO
    return format_iso(record.last_read_at)


def _apply(record: LastRead, now: datetime, guard_monotonic: bool) -> None:
    if guard_monotonic and ensure_utc(record.last_read_at) >= now:
        return
    record.last_read_at = now


def mark_read(
    db: Session,
    user_id: str,
    conversation_id: str,
    guard_monotonic: bool = True,
    now: datetime | None = None,
) -> str:
    """Set the watermark to the server's current time.

    Returns:
        The stored watermark as an ISO string (which may be the previous,
        later value when the monotonic guard holds it in place).
    """
    now = ensure_utc(now) if now is not None else utc_now()

    try:
        with transaction(db):
            record = _load(db, user_id, conversation_id)
            if record is None:
                record = LastRead(
                    user_id=user_id, conversation_id=conversation_id, last_read_at=now
                )
                db.add(record)
            else:
                _apply(record, now, guard_monotonic)
            db.flush()
    except Exception as e:
        if normalize_error(e) is not ErrorKind.ALREADY_EXISTS:
            raise
        # Another request created the row first; fold our write into it
        with transaction(db):
            record = _load(db, user_id, conversation_id)
            if record is None:
                raise
            _apply(record, now, guard_monotonic)

    logger.info("last_read_marked", conversation_id=conversation_id)
    return format_iso(record.last_read_at)


def unread_counts(db: Session, viewer_id: str, other_user_id: str) -> dict[str, int | str]:
    """Unread counts for both directed conversations with other_user_id.

    ``as_santa`` is the conversation where the viewer is the other user's
    Santa; ``as_recipient`` the one where the other user is the viewer's.

    Raises:
        NotFoundError: other_user_id is not a known user.
    """
    if db.get(User, other_user_id) is None:
        raise NotFoundError(message="User not found")

    santa_conversation = build_conversation_id(viewer_id, other_user_id)
    recipient_conversation = build_conversation_id(other_user_id, viewer_id)

    incoming = list(
        db.scalars(
            select(Message).where(
                and_(Message.from_id == other_user_id, Message.to_id == viewer_id)
            )
        )
    )

    as_santa = derive_unread(
        incoming,
        viewer_id,
        santa_conversation,
        get_watermark(db, viewer_id, santa_conversation),
    )
    as_recipient = derive_unread(
        incoming,
        viewer_id,
        recipient_conversation,
        get_watermark(db, viewer_id, recipient_conversation),
    )

    return {
        "other_user_id": other_user_id,
        "as_santa": as_santa,
        "as_recipient": as_recipient,
        "santa_conversation_id": santa_conversation,
        "recipient_conversation_id": recipient_conversation,
    }
