#!/usr/bin/env python
"""Seed the development database with a Santa/recipient pair.

Creates two users who are each other's Santa, so both directed
conversations exist, plus one legacy message (no conversation id) to
exercise the legacy matching path.

Constraints:
- Refuses to run in staging or prod (SANTACHAT_ENV check)
- Idempotent via ON CONFLICT DO NOTHING
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py
"""

import os
import sys

SEED_USERS = [
    ("00000000-0000-4000-8000-00000000a11c", "alice@example.com", "Alice"),
    ("00000000-0000-4000-8000-000000000b0b", "bob@example.com", "Bob"),
]
LEGACY_MESSAGE_ID = "00000000-0000-4000-8000-0000000001e9"


def main():
    santachat_env = os.getenv("SANTACHAT_ENV", "local")
    if santachat_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in SANTACHAT_ENV={santachat_env}")
        sys.exit(1)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from sqlalchemy import create_engine, text

    from santachat.routing import conversation_id

    engine = create_engine(database_url)
    (alice_id, _, _), (bob_id, _, _) = SEED_USERS

    created_users = []
    with engine.connect() as conn:
        for user_id, email, display_name in SEED_USERS:
            result = conn.execute(
                text("""
                    INSERT INTO users (id, email, display_name)
                    VALUES (:id, :email, :display_name)
                    ON CONFLICT (id) DO NOTHING
                    RETURNING id
                """),
                {"id": user_id, "email": email, "display_name": display_name},
            )
            if result.fetchone() is not None:
                created_users.append(display_name)

        result = conn.execute(
            text("""
                INSERT INTO messages (id, from_id, to_id, content, timestamp)
                VALUES (:id, :from_id, :to_id, :content, now() - interval '30 days')
                ON CONFLICT (id) DO NOTHING
                RETURNING id
            """),
            {
                "id": LEGACY_MESSAGE_ID,
                "from_id": bob_id,
                "to_id": alice_id,
                "content": "Hello from before conversations were scoped",
            },
        )
        legacy_created = result.fetchone() is not None

        conn.commit()

    db_display = database_url.split("@")[1] if "@" in database_url else database_url
    print(f"Database: {db_display}")
    print(f"SANTACHAT_ENV: {santachat_env}")
    print()
    print(f"Users created: {', '.join(created_users) or 'none (already seeded)'}")
    print(f"{'✓ Created' if legacy_created else '• Exists'}: legacy message {LEGACY_MESSAGE_ID}")
    print()
    print("Conversations:")
    print(f"  Alice as Santa: {conversation_id(alice_id, bob_id)}")
    print(f"  Bob as Santa:   {conversation_id(bob_id, alice_id)}")


if __name__ == "__main__":
    main()
