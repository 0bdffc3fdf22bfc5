# Overview: Pytest coverage for storage error classification and the retry executor.

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from app.extensions import db
from app.models import Tag
from app.services import concurrency
from app.services.concurrency import (
    FOREIGN_KEY_VIOLATION,
    LOCK_NOT_AVAILABLE,
    SERIALIZATION_FAILURE,
    UNIQUE_VIOLATION,
    commit_with_retry,
    error_code,
    is_unique_violation,
    run_with_retry,
)


class FakeDriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def integrity_error(message, pgcode=None):
    return IntegrityError("INSERT ...", {}, FakeDriverError(message, pgcode))


@pytest.fixture
def sleeps(monkeypatch):
    calls = []
    monkeypatch.setattr(concurrency.time, "sleep", calls.append)
    return calls


class TestErrorCode:
    def test_driver_code_wins(self):
        assert error_code(integrity_error("boom", pgcode="23503")) == FOREIGN_KEY_VIOLATION

    def test_code_embedded_in_message(self):
        assert error_code(integrity_error("failed (error code: 40001)")) == SERIALIZATION_FAILURE

    def test_plain_exception_with_code_attribute(self):
        exc = RuntimeError("custom")
        exc.code = "23505"
        assert error_code(exc) == UNIQUE_VIOLATION

    def test_sqlite_unique_message(self):
        assert error_code(integrity_error("UNIQUE constraint failed: tags.name")) == UNIQUE_VIOLATION

    def test_sqlite_foreign_key_message(self):
        assert error_code(integrity_error("FOREIGN KEY constraint failed")) == FOREIGN_KEY_VIOLATION

    def test_database_locked(self):
        exc = OperationalError("UPDATE ...", {}, FakeDriverError("database is locked"))
        assert error_code(exc) == LOCK_NOT_AVAILABLE

    def test_stale_data_is_serialization_failure(self):
        assert error_code(StaleDataError("row changed")) == SERIALIZATION_FAILURE

    def test_unclassifiable(self):
        assert error_code(ValueError("nope")) is None

    def test_real_unique_violation(self, db_session):
        db_session.add(Tag(name="python"))
        db_session.commit()
        db_session.add(Tag(name="python"))
        with pytest.raises(IntegrityError) as excinfo:
            db_session.commit()
        db_session.rollback()
        assert is_unique_violation(excinfo.value)


class TestRunWithRetry:
    def test_success_first_try(self, db_session, sleeps):
        assert run_with_retry(lambda: 42) == 42
        assert sleeps == []

    def test_retries_unique_violation_with_backoff(self, db_session, sleeps):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise integrity_error("dup", pgcode=UNIQUE_VIOLATION)
            return "ok"

        assert run_with_retry(flaky, max_retries=3, base_delay=0.1) == "ok"
        assert len(attempts) == 3
        assert sleeps == pytest.approx([0.1, 0.2])

    def test_non_retryable_error_raises_immediately(self, db_session, sleeps):
        attempts = []

        def broken():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_with_retry(broken, max_retries=5, base_delay=0.1)
        assert len(attempts) == 1
        assert sleeps == []

    def test_exhausted_retries_reraise_last_error(self, db_session, sleeps):
        attempts = []

        def always_conflicts():
            attempts.append(1)
            raise integrity_error(f"dup {len(attempts)}", pgcode=UNIQUE_VIOLATION)

        with pytest.raises(IntegrityError) as excinfo:
            run_with_retry(always_conflicts, max_retries=2, base_delay=0.5)
        assert len(attempts) == 3
        assert "dup 3" in str(excinfo.value)
        assert sleeps == pytest.approx([0.5, 1.0])

    def test_zero_retries_runs_once(self, db_session, sleeps):
        attempts = []

        def conflict():
            attempts.append(1)
            raise integrity_error("dup", pgcode=UNIQUE_VIOLATION)

        with pytest.raises(IntegrityError):
            run_with_retry(conflict, max_retries=0)
        assert len(attempts) == 1

    def test_custom_retryable_codes(self, db_session, sleeps):
        attempts = []

        def stale_then_ok():
            attempts.append(1)
            if len(attempts) == 1:
                raise StaleDataError("changed underneath")
            return "done"

        result = run_with_retry(
            stale_then_ok,
            base_delay=0.1,
            retryable_codes={SERIALIZATION_FAILURE},
        )
        assert result == "done"
        assert len(attempts) == 2

    def test_unique_not_retried_when_excluded(self, db_session, sleeps):
        def conflict():
            raise integrity_error("dup", pgcode=UNIQUE_VIOLATION)

        with pytest.raises(IntegrityError):
            run_with_retry(conflict, retryable_codes={SERIALIZATION_FAILURE})
        assert sleeps == []

    def test_defaults_come_from_app_config(self, app, db_session, sleeps):
        attempts = []

        def conflict():
            attempts.append(1)
            raise integrity_error("dup", pgcode=UNIQUE_VIOLATION)

        app.config["RETRY_MAX_RETRIES"] = 1
        try:
            with pytest.raises(IntegrityError):
                run_with_retry(conflict)
        finally:
            app.config["RETRY_MAX_RETRIES"] = 3
        assert len(attempts) == 2

    def test_session_usable_after_retried_failure(self, db_session, sleeps):
        db_session.add(Tag(name="web"))
        db_session.commit()
        attempts = []

        def insert_tag():
            attempts.append(1)
            name = "web" if len(attempts) == 1 else "web-2"
            db.session.add(Tag(name=name))
            db.session.commit()
            return name

        assert run_with_retry(insert_tag, base_delay=0) == "web-2"
        assert db_session.query(Tag).count() == 2

    def test_commit_with_retry(self, db_session, sleeps):
        db_session.add(Tag(name="data"))
        commit_with_retry()
        assert db_session.query(Tag).filter_by(name="data").count() == 1
