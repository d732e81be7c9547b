"""Pytest configuration and fixtures for Polychat tests.

Test isolation strategy:
- Every test that touches the database gets its own SQLite file under
  tmp_path, with the schema created from the ORM metadata
- The app under test gets the same engine through dependency overrides and a
  bootstrap callback bound to it, so request-scoped sessions, streaming
  sessions and the test's own assertions all see one database
- Auth tests use authenticated_client with HS256 tokens minted by helpers
"""

import base64
import os
import sys
from collections.abc import Generator
from pathlib import Path
from uuid import UUID

# Settings are read at import/app-creation time; give them test values first.
os.environ.setdefault("POLYCHAT_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-for-polychat")
os.environ.setdefault("LOG_JSON", "false")

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from polychat.api.deps import get_db, get_session_factory
from polychat.app import create_app
from polychat.auth.middleware import AuthMiddleware
from polychat.auth.verifier import Hs256TokenVerifier
from polychat.config import clear_settings_cache, get_settings
from polychat.db.engine import create_db_engine
from polychat.db.models import Base
from polychat.db.session import create_session_factory
from polychat.services.crypto import clear_master_key_cache
from polychat.services.users import ensure_user
from tests.helpers import create_test_user_id

TEST_MASTER_KEY = base64.b64encode(bytes(range(32))).decode("ascii")


@pytest.fixture(autouse=True)
def test_settings(monkeypatch) -> Generator[None, None, None]:
    """Fresh settings and master key for every test."""
    monkeypatch.setenv("POLYCHAT_KEY_ENCRYPTION_KEY", TEST_MASTER_KEY)
    clear_settings_cache()
    clear_master_key_cache()
    yield
    clear_settings_cache()
    clear_master_key_cache()


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """A file-backed SQLite database with the full schema."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'polychat_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """A session for arranging data and asserting on results."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_user_id(db_session: Session) -> UUID:
    """A user that already exists in the database."""
    user_id = create_test_user_id()
    ensure_user(db_session, user_id)
    return user_id


@pytest.fixture
def test_verifier() -> Hs256TokenVerifier:
    return Hs256TokenVerifier(get_settings().jwt_secret)


@pytest.fixture
def authenticated_app(
    session_factory: sessionmaker[Session], test_verifier: Hs256TokenVerifier
) -> FastAPI:
    """Provide a FastAPI app with auth middleware bound to the test database."""

    def bootstrap_callback(user_id: UUID) -> None:
        db = session_factory()
        try:
            ensure_user(db, user_id)
        finally:
            db.close()

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app = create_app(skip_auth_middleware=True, token_verifier=test_verifier)
    app.add_middleware(
        AuthMiddleware,
        verifier=test_verifier,
        bootstrap_callback=bootstrap_callback,
    )
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    return app


@pytest.fixture
def authenticated_client(authenticated_app: FastAPI) -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client with auth middleware.

    Use auth_headers() to generate valid tokens for requests.
    """
    with TestClient(authenticated_app) as client:
        yield client


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide a FastAPI test client without authentication."""
    app = create_app(skip_auth_middleware=True)
    with TestClient(app) as client:
        yield client
