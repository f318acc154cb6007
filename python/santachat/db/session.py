"""Sessions and transactions.

Routes get a request-scoped session from ``get_db``; every mutation runs
inside ``transaction`` so a failure leaves nothing half-written.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager
from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from santachat.db.engine import get_engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Build a session factory, bound to the application engine by default.

    Objects stay readable after commit so services can serialize what they wrote.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


@lru_cache
def get_session_factory() -> sessionmaker[Session]:
    """The application's session factory, built on first use.

    Raises:
        ApiError(E_SERVICE_UNAVAILABLE): No database is configured.
    """
    return create_session_factory()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is closed after the request."""
    with get_session_factory()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Iterator[None]:
    """Commit the block's work, or roll it back and re-raise."""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
