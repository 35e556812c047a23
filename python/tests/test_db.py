"""Database smoke tests.

Runs against whichever backend the test engine is bound to (PostgreSQL when
DATABASE_URL names one, SQLite otherwise).
"""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from redline.db.models import Annotation, Comment, User
from redline.db.session import insert_ignoring_conflict, transaction
from tests.factories import create_project_with_file, create_test_annotation, web_point_target


class TestDatabaseConnectivity:
    def test_session_opens_and_executes_query(self, db_session: Session):
        result = db_session.execute(text("SELECT 1 AS value"))

        assert result.scalar() == 1


class TestInsertIgnoringConflict:
    def test_duplicate_key_is_ignored(self, db_session: Session):
        user_id = uuid4()

        with transaction(db_session):
            first = insert_ignoring_conflict(db_session, User.__table__, {"id": user_id, "email": "a@b.test"})
            second = insert_ignoring_conflict(db_session, User.__table__, {"id": user_id, "email": "c@d.test"})

        assert (first, second) == (True, False)
        assert db_session.get(User, user_id, populate_existing=True).email == "a@b.test"

    def test_postgresql_emits_on_conflict_do_nothing(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "postgresql"
        db.execute.return_value.rowcount = 1

        assert insert_ignoring_conflict(
            db, Comment.__table__, {"id": uuid4(), "annotation_id": uuid4(), "user_id": uuid4(), "text": "x"}
        )

        statement = db.execute.call_args.args[0]
        assert "ON CONFLICT (id) DO NOTHING" in str(statement.compile(dialect=postgresql.dialect()))

    def test_unsupported_dialect(self):
        db = MagicMock()
        db.get_bind.return_value.dialect.name = "mysql"

        with pytest.raises(NotImplementedError):
            insert_ignoring_conflict(db, User.__table__, {"id": uuid4()})


class TestJsonColumns:
    def test_web_target_round_trips(self, db_session: Session):
        owner_id = uuid4()
        _, file_id = create_project_with_file(db_session, owner_id, "WEBSITE")
        target = web_point_target("main > section:nth-of-type(2) > a.cta")
        annotation_id, _ = create_test_annotation(
            db_session, file_id, owner_id, target=target, viewport="DESKTOP"
        )

        stored = db_session.get(Annotation, annotation_id, populate_existing=True)

        assert stored.target == target
        assert stored.viewport == "DESKTOP"
