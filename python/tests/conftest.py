"""Pytest configuration and fixtures for santachat tests.

Test isolation strategy:
- Every test that touches the store gets a fresh in-memory SQLite database
  built from the ORM metadata (StaticPool keeps one shared connection)
- API tests use the real app with a test token verifier and an overridden
  get_db dependency
- Settings caches are cleared around every test
"""

import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from santachat.app import add_request_id_middleware, create_app
from santachat.config import clear_settings_cache
from santachat.db.models import Base
from santachat.db.session import create_session_factory, get_db
from tests.factories import create_user
from tests.support.fakes import RecordingDispatcher
from tests.support.token_verifier import MockJwtVerifier


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Ensure every test sees settings built from its own environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """A fresh in-memory database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    SessionLocal = create_session_factory(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_verifier() -> MockJwtVerifier:
    return MockJwtVerifier()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def app(engine: Engine, test_verifier: MockJwtVerifier, dispatcher: RecordingDispatcher):
    """The full application wired to the test database and verifier."""
    app = create_app(token_verifier=test_verifier, notification_dispatcher=dispatcher)
    add_request_id_middleware(app, log_requests=False)

    SessionLocal = create_session_factory(engine)

    def override_get_db() -> Generator[Session, None, None]:
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def santa_pair(db_session: Session) -> tuple[str, str]:
    """Two users, each the other's Santa, committed to the test database."""
    alice = create_user(db_session, "alice", display_name="Alice")
    bob = create_user(db_session, "bob", display_name="Bob")
    return alice.id, bob.id
