"""
Tests for run_in_transaction: commit once, roll back on failure, and retry
only the errors concurrent writers produce.
"""
import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.application.errors import ConflictError
from app.infrastructure.db.models import TaskCommentModel, User
from app.infrastructure.db.transactions import run_in_transaction


@pytest.fixture
def foreign_keys(db_engine):
    """SQLite only enforces foreign keys when asked to."""
    with db_engine.connect() as conn:
        conn.exec_driver_sql("PRAGMA foreign_keys=ON")


class _SerializationFailure(Exception):
    sqlstate = "40001"


def _user(email, **fields):
    values = dict(email=email, password_hash="x", role="client", name="Client")
    values.update(fields)
    return User(**values)


class TestRunInTransaction:
    def test_commits_result(self, db_session):
        def _apply():
            db_session.add(_user("one@client.com"))
            return "done"

        assert run_in_transaction(db_session, _apply) == "done"
        assert db_session.query(User).filter_by(email="one@client.com").count() == 1

    def test_error_rolls_back_everything(self, db_session):
        def _apply():
            db_session.add(_user("one@client.com"))
            db_session.flush()
            raise ValueError("boom")

        with pytest.raises(ValueError):
            run_in_transaction(db_session, _apply)
        assert db_session.query(User).count() == 0

    def test_unique_violation_is_retried(self, db_session, make_user):
        make_user("client", email="taken@client.com")
        calls = []

        def _apply():
            calls.append(1)
            db_session.add(_user("taken@client.com"))
            db_session.flush()

        with pytest.raises(ConflictError, match="concurrently"):
            run_in_transaction(db_session, _apply, attempts=3)
        assert len(calls) == 3

    def test_serialization_failure_is_retried(self, db_session):
        calls = []

        def _apply():
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("UPDATE board_columns", {}, _SerializationFailure())
            return len(calls)

        assert run_in_transaction(db_session, _apply, attempts=3) == 2

    def test_foreign_key_violation_is_not_retried(self, db_session, foreign_keys):
        calls = []

        def _apply():
            calls.append(1)
            db_session.add(TaskCommentModel(task_id=9999, author_id=9999, content="Hi", mention_ids=[]))
            db_session.flush()

        with pytest.raises(ConflictError, match="still referenced") as exc_info:
            run_in_transaction(db_session, _apply, attempts=3)
        assert len(calls) == 1
        assert isinstance(exc_info.value.__cause__, IntegrityError)

    def test_other_integrity_errors_propagate(self, db_session):
        calls = []

        def _apply():
            calls.append(1)
            db_session.add(User(email="nameless@client.com", password_hash="x", role="client"))
            db_session.flush()

        with pytest.raises(IntegrityError):
            run_in_transaction(db_session, _apply, attempts=3)
        assert len(calls) == 1
