"""SQLAlchemy ORM models for the durable message store.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are dialect-neutral so the same models run on PostgreSQL in
deployment and SQLite in tests.
"""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Ids are UUID strings; client-supplied message ids are stored verbatim
ID_LENGTH = 64


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class User(Base):
    """Participant account.

    The user ID matches the identity provider's ``sub`` claim. The roster and
    pairing are managed elsewhere; messaging only needs to know who exists.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    email: Mapped[str | None] = mapped_column(Text, unique=True, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


class Message(Base):
    """A persisted chat message.

    Immutable once created. ``id`` equals ``client_message_id`` whenever the
    client supplied one, which makes the primary key the idempotency key.
    ``timestamp`` is the server's send time; ``client_created_at`` is the
    client's own ISO string, kept verbatim for replay comparison.
    """

    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(ID_LENGTH), primary_key=True)
    from_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    to_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    conversation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_message_id: Mapped[str | None] = mapped_column(String(ID_LENGTH), nullable=True)
    client_created_at: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_messages_from_to_timestamp", "from_id", "to_id", "timestamp"),
        Index("ix_messages_to_timestamp", "to_id", "timestamp"),
        Index("ix_messages_conversation_id", "conversation_id"),
    )


class LastRead(Base):
    """Per-user, per-conversation read watermark."""

    __tablename__ = "last_read"

    user_id: Mapped[str] = mapped_column(
        String(ID_LENGTH), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    conversation_id: Mapped[str] = mapped_column(Text, primary_key=True)
    last_read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
