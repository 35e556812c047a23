"""Pytest configuration and fixtures for Redline tests.

Test isolation strategy:
- One engine per test session: PostgreSQL when DATABASE_URL names one,
  in-memory SQLite otherwise; schema from the ORM metadata
- Tests that use db_session get an outer transaction that rolls back; service
  commits only release SAVEPOINTs
- API tests run the real app with get_db overridden to that same session
- Auth tests use auth_client with MockJwtVerifier tokens (see helpers.auth_headers)
- Redis is a MagicMock; published envelopes are read back from its calls
"""

import os
from collections.abc import Generator
from unittest.mock import MagicMock
from uuid import UUID

os.environ.setdefault("REDLINE_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session

from redline.app import add_request_id_middleware, create_app
from redline.auth.access_cache import get_access_cache
from redline.auth.middleware import AuthMiddleware
from redline.config import clear_settings_cache
from redline.db.session import get_db
from redline.services.bootstrap import ensure_user
from redline.services.broadcast import Broadcaster, set_broadcaster
from redline.storage.client import FakeStorageClient
from tests.helpers import create_test_user_id
from tests.support.test_verifier import MockJwtVerifier
from tests.utils.db import TestDatabaseManager, create_test_engine


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_test_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine: Engine) -> Generator[Session, None, None]:
    """Provide a database session with savepoint isolation.

    Each test gets a fresh session that is rolled back after the test,
    ensuring no data persists between tests.
    """
    with TestDatabaseManager(engine) as session:
        yield session


@pytest.fixture(autouse=True)
def reset_process_state() -> Generator[None, None, None]:
    """Clear settings, the project access cache and the global broadcaster."""
    clear_settings_cache()
    get_access_cache().clear()
    set_broadcaster(None)
    yield
    get_access_cache().clear()
    set_broadcaster(None)
    clear_settings_cache()


@pytest.fixture
def storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def redis_mock() -> MagicMock:
    redis = MagicMock()
    redis.publish.return_value = 1
    return redis


@pytest.fixture
def broadcaster(redis_mock: MagicMock) -> Broadcaster:
    return Broadcaster(redis_client=redis_mock)


def build_test_app(
    db_session: Session,
    storage: FakeStorageClient,
    broadcaster: Broadcaster,
) -> FastAPI:
    """Real app wiring with the test session, fake storage and mocked Redis."""
    app = create_app(
        skip_auth_middleware=True,
        storage_client=storage,
        broadcaster=broadcaster,
    )

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    def bootstrap_callback(user_id: UUID, claims: dict) -> None:
        ensure_user(db_session, user_id, claims)

    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        bootstrap_callback=bootstrap_callback,
    )
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def auth_client(
    db_session: Session, storage: FakeStorageClient, broadcaster: Broadcaster
) -> Generator[TestClient, None, None]:
    """FastAPI test client with auth middleware.

    Use helpers.auth_headers(user_id) to authenticate requests.
    """
    app = build_test_app(db_session, storage, broadcaster)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    return create_test_user_id()

