"""Sessions for the API, the Celery worker and the scheduler's per-secret work.

Loaded rows are detached snapshots: sessions never expire attributes on
commit, so records mapped from a row stay readable after the transaction
that produced them has closed.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from deadswitch.db.engine import get_engine

_default_factory: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Bind a sessionmaker to ``engine`` (the process engine when omitted)."""
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide factory shared by request handlers and worker tasks."""
    global _default_factory
    if _default_factory is None:
        _default_factory = create_session_factory()
    return _default_factory


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; route handlers own their commits."""
    with get_session_factory()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit the work done inside the block, or roll it back and re-raise.

    Every state change of a secret (reminder job rows, trigger status,
    token consumption) goes through one of these blocks so a failure in
    the middle never leaves a half-applied transition behind.
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
