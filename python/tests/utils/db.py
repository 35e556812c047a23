"""Test utilities for database isolation.

Tests run against DATABASE_URL when it names a PostgreSQL database, and
against an in-memory SQLite database shared through a StaticPool otherwise.
Each test's session lives inside an outer transaction that is rolled back
afterwards; service-level commits only release SAVEPOINTs.
"""

import os
from typing import Any

from sqlalchemy import Connection, Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from redline.db.models import Base

SQLITE_MEMORY_URL = "sqlite+pysqlite:///:memory:"


def get_test_database_url() -> str:
    return os.environ.get("DATABASE_URL") or SQLITE_MEMORY_URL


def create_test_engine(url: str | None = None) -> Engine:
    """Create the engine for the test session.

    PostgreSQL gets a plain engine; the schema is created if migrations have
    not been run. SQLite gets a single shared connection with working
    SAVEPOINTs: pysqlite's own transaction handling breaks SAVEPOINT, so it
    is switched off and BEGIN is emitted by SQLAlchemy instead.
    """
    url = url or get_test_database_url()
    if make_url(url).get_backend_name() == "postgresql":
        engine = create_engine(url)
        Base.metadata.create_all(engine)
        return engine

    engine = create_engine(
        url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


class TestDatabaseManager:
    """Manager for test database sessions with savepoint isolation.

    Usage in conftest.py:
        @pytest.fixture
        def db_session(engine):
            with TestDatabaseManager(engine) as session:
                yield session
    """

    __test__ = False

    def __init__(self, engine: Engine):
        self.engine = engine
        self._connection: Connection | None = None
        self._session: Session | None = None

    def __enter__(self) -> Session:
        self._connection = self.engine.connect()
        self._connection.begin()

        self._session = Session(
            bind=self._connection,
            join_transaction_mode="create_savepoint",
            autoflush=False,
            expire_on_commit=False,
        )
        return self._session

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._session:
            self._session.close()
        if self._connection:
            self._connection.rollback()
            self._connection.close()
