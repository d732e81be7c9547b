"""Session factories for request handlers and long-lived work.

Route handlers take a session from get_db(), which closes it when the
request ends. A streaming response body outlives that request-scoped
session, as do the /ws push loop and the detached title update, so these
take the factory from get_session_factory() and open a short session per
database step (inside run_in_threadpool).

Mutations go through transaction(), which commits or rolls back.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from polychat.db.engine import get_engine

_session_factory: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Build a sessionmaker for engine (the configured engine when omitted).

    Objects stay loaded after commit so a saved Message can still be
    serialized for the broadcast hub once its session is gone.
    """
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide factory, created on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory()
    return _session_factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit db when the block exits cleanly; roll back and re-raise otherwise.

    A failed commit is rolled back too.
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
