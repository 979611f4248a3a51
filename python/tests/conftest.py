"""Pytest configuration and fixtures for deadswitch tests.

Test isolation strategy:
- Every test gets its own file-backed SQLite database under tmp_path, created
  from Base.metadata (the engine serializes transactions with BEGIN IMMEDIATE,
  so threaded tests behave like concurrent connections)
- Email goes through MockEmailProvider; retry backoff and the unknown-token
  delay use a no-op sleep
- The app is built from explicit Settings and services, never the environment
"""

import os
import sys
import tempfile
from collections.abc import Generator
from datetime import UTC, datetime
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

# Modules that read settings at import time (deadswitch.celery) need these
os.environ.setdefault("DEADSWITCH_ENV", "test")
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'deadswitch_import.db'}"
)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from deadswitch.api.deps import get_db
from deadswitch.app import add_request_id_middleware, create_app
from deadswitch.config import Settings, clear_settings_cache
from deadswitch.db.engine import create_db_engine
from deadswitch.db.models import Base
from deadswitch.db.session import create_session_factory
from deadswitch.services.bootstrap import Services, build_services
from deadswitch.services.email import MockEmailProvider
from tests.helpers import CRON_SECRET, make_settings, no_sleep


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def now() -> datetime:
    """A fixed instant for tests that drive time explicitly."""
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """A fresh SQLite database per test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'deadswitch_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """A session for arranging data and asserting on it."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def mock_provider() -> MockEmailProvider:
    return MockEmailProvider(sleep=no_sleep)


@pytest.fixture
def services(
    settings: Settings,
    session_factory: sessionmaker[Session],
    mock_provider: MockEmailProvider,
) -> Generator[Services, None, None]:
    """The full service graph, wired to the mock provider."""
    services = build_services(settings, session_factory, provider=mock_provider, sleep=no_sleep)
    yield services
    services.close()


@pytest.fixture
def app(settings: Settings, session_factory: sessionmaker[Session], services: Services):
    """App with request-id middleware and a get_db bound to the test database."""
    app = create_app(settings, session_factory, services)
    add_request_id_middleware(app, log_requests=False)

    def override_get_db() -> Generator[Session, None, None]:
        db = session_factory()
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
def cron_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}
