"""
Shared pytest configuration.

Ensures the project root is importable and points the application at an
in-memory SQLite database before `chatapi.settings` is imported, so that
app startup never touches a real database file.
"""

import os
import sys
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("AUTO_APPLY_DB_MIGRATIONS", "false")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from chatapi.routes import create_app  # noqa: E402
from tests.utils import (  # noqa: E402
    FakeUpstream,
    install_fake_upstream,
    install_inmemory_db,
    make_session_factory,
)


@pytest.fixture()
def session_factory():
    factory, engine = make_session_factory()
    yield factory
    engine.dispose()


@pytest.fixture()
def db_session(session_factory) -> Session:
    with session_factory() as session:
        yield session


@pytest.fixture()
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def app_with_inmemory_db(fake_upstream):
    app = create_app()
    SessionLocal = install_inmemory_db(app)
    install_fake_upstream(app, fake_upstream)
    return app, SessionLocal


@pytest.fixture()
def client(app_with_inmemory_db) -> TestClient:
    app, _ = app_with_inmemory_db
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
