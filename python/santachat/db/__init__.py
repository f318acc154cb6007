"""Durable message store: engine, sessions and ORM models."""

from santachat.db.engine import create_db_engine, get_engine
from santachat.db.models import Base, LastRead, Message, User
from santachat.db.session import get_db, transaction

__all__ = [
    "Base",
    "LastRead",
    "Message",
    "User",
    "create_db_engine",
    "get_db",
    "get_engine",
    "transaction",
]
