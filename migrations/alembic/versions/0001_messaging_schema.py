"""Messaging schema - users, messages, last_read

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates the durable message store. Message ids are client-chosen when the
client sends one, so the primary key doubles as the idempotency key.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("from_id", sa.String(64), nullable=False),
        sa.Column("to_id", sa.String(64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), nullable=False),
        # NULL for messages written before conversations were scoped
        sa.Column("conversation_id", sa.Text(), nullable=True),
        sa.Column("client_message_id", sa.String(64), nullable=True),
        # Kept verbatim as the client sent it
        sa.Column("client_created_at", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["from_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_messages_from_to_timestamp", "messages", ["from_id", "to_id", "timestamp"]
    )
    op.create_index("ix_messages_to_timestamp", "messages", ["to_id", "timestamp"])
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    # ==========================================================================
    # last_read table
    # ==========================================================================
    op.create_table(
        "last_read",
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("conversation_id", sa.Text(), nullable=False),
        sa.Column("last_read_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("user_id", "conversation_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )


def downgrade() -> None:
    op.drop_table("last_read")
    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_index("ix_messages_to_timestamp", table_name="messages")
    op.drop_index("ix_messages_from_to_timestamp", table_name="messages")
    op.drop_table("messages")
    op.drop_table("users")
