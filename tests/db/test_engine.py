"""Tests for engine construction and the transactional scope helper."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from approval_kernel.db.engine import build_engine, get_engine, session_scope


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'approvals.db'}")
    yield engine
    engine.dispose()


class TestSqliteSavepoints:

    def test_nested_rollback_keeps_outer_work(self, file_engine):
        with file_engine.begin() as conn:
            conn.execute(text("CREATE TABLE docs (id INTEGER PRIMARY KEY)"))

        with file_engine.connect() as conn:
            with conn.begin():
                conn.execute(text("INSERT INTO docs (id) VALUES (1)"))
                with pytest.raises(IntegrityError):
                    with conn.begin_nested():
                        conn.execute(text("INSERT INTO docs (id) VALUES (1)"))
                conn.execute(text("INSERT INTO docs (id) VALUES (2)"))

            rows = conn.execute(text("SELECT id FROM docs ORDER BY id")).scalars().all()

        assert rows == [1, 2]


class TestSessionScope:

    def test_rolls_back_and_reraises(self, db_engine):
        with pytest.raises(RuntimeError, match="boom"):
            with session_scope() as session:
                session.execute(text("SELECT 1"))
                raise RuntimeError("boom")

    def test_yields_session_on_current_engine(self, db_engine):
        with session_scope() as session:
            assert session.get_bind() is get_engine()
