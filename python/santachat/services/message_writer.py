"""Idempotent message writer.

Turns a possibly-retried send into exactly one persisted message:

1. Insert the row keyed by ``message_id`` (the client's message id when it
   sent one).
2. On a duplicate key, load the stored row. If every immutable field matches
   the incoming data this is a replay of a request whose response was lost;
   otherwise the id was reused for different content, a conflict. Neither
   case overwrites the stored row.
3. Transient storage failures retry the whole insert with linear backoff
   (delay * attempt) up to ``max_attempts``; exhausting them raises
   TransientStorageError.
4. Anything else propagates immediately.

The writer holds no locks. Coordination is the primary key constraint.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import insert
from sqlalchemy.orm import Session

from santachat.db.models import Message
from santachat.db.session import transaction
from santachat.errors import ErrorKind, TransientStorageError, normalize_error
from santachat.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_S = 0.12

IMMUTABLE_FIELDS = (
    "id",
    "from_id",
    "to_id",
    "content",
    "conversation_id",
    "client_message_id",
    "client_created_at",
)


@dataclass(frozen=True)
class MessageData:
    """Fields of a message about to be written."""

    id: str
    from_id: str
    to_id: str
    content: str
    timestamp: datetime
    conversation_id: str | None = None
    client_message_id: str | None = None
    client_created_at: str | None = None


@dataclass
class WriteResult:
    """Outcome of write_message.

    Exactly one of ``created``, ``replayed`` or ``conflict`` is true.
    ``message`` is always the stored row.
    """

    created: bool
    message: Message
    replayed: bool = False
    conflict: bool = False


def matches_immutable_fields(existing: Message, data: MessageData) -> bool:
    """Whether a stored message is byte-for-byte the one being written."""
    return all(getattr(existing, field) == getattr(data, field) for field in IMMUTABLE_FIELDS)


def _insert(db: Session, data: MessageData) -> Message:
    # Core insert: a stored row with the same id may already sit in the identity map
    with transaction(db):
        db.execute(
            insert(Message).values(
                id=data.id,
                from_id=data.from_id,
                to_id=data.to_id,
                content=data.content,
                timestamp=data.timestamp,
                conversation_id=data.conversation_id,
                client_message_id=data.client_message_id,
                client_created_at=data.client_created_at,
            )
        )
    return db.get(Message, data.id, populate_existing=True)


def _resolve_existing(db: Session, data: MessageData, error: Exception) -> WriteResult:
    existing = db.get(Message, data.id, populate_existing=True)
    if existing is None:
        # The constraint that fired was not the primary key
        raise error

    if matches_immutable_fields(existing, data):
        logger.info("message_write_replayed", message_id=data.id)
        return WriteResult(created=False, message=existing, replayed=True)

    logger.warning("message_write_conflict", message_id=data.id)
    return WriteResult(created=False, message=existing, conflict=True)


def write_message(
    db: Session,
    data: MessageData,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay_s: float = DEFAULT_RETRY_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> WriteResult:
    """Create the message if absent, resolving replays and conflicts.

    Args:
        db: Database session.
        data: The message to persist; ``data.id`` is the idempotency key.
        max_attempts: Total insert attempts for transient failures.
        retry_delay_s: Base delay; attempt N waits ``retry_delay_s * N``.
        sleep: Injected for tests.

    Returns:
        WriteResult describing whether the row was created, replayed or conflicted.

    Raises:
        TransientStorageError: Transient failures outlasted every attempt.
        Exception: Any non-transient storage error, unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            message = _insert(db, data)
        except Exception as e:
            kind = normalize_error(e)

            if kind is ErrorKind.ALREADY_EXISTS:
                return _resolve_existing(db, data, e)

            if kind is not ErrorKind.TRANSIENT:
                raise

            if attempt >= max_attempts:
                logger.error(
                    "message_write_exhausted",
                    message_id=data.id,
                    attempts=attempt,
                    error=str(e),
                )
                raise TransientStorageError(
                    f"Message write failed after {attempt} attempts", attempts=attempt
                ) from e

            delay = retry_delay_s * attempt
            logger.warning(
                "message_write_transient_retry",
                message_id=data.id,
                attempt=attempt,
                delay_s=delay,
                error=str(e),
            )
            sleep(delay)
            continue

        logger.info("message_write_created", message_id=data.id)
        return WriteResult(created=True, message=message)
