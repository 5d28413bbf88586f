"""
Unit tests for the unit-of-work helpers in enrollment.database.

Tests cover:
- Which driver errors count as concurrent-write conflicts
- transaction() commit, rollback and StorageConflict mapping
- The API rendering of StorageConflict
"""

import sqlite3

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from enrollment.database import is_conflict, transaction
from enrollment.errors import StorageConflict
from enrollment.main import create_app
from enrollment.models import Voter


class _PgError(Exception):
    """Stands in for a psycopg error carrying a SQLSTATE."""

    def __init__(self, message: str, pgcode: str) -> None:
        super().__init__(message)
        self.pgcode = pgcode


def _locked() -> OperationalError:
    return OperationalError("UPDATE voters SET ...", {}, sqlite3.OperationalError("database is locked"))


class TestIsConflict:
    """Tests for is_conflict."""

    def test_sqlite_locked(self):
        assert is_conflict(_locked()) is True

    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_postgres_conflict_codes(self, pgcode):
        exc = DBAPIError("UPDATE voters SET ...", {}, _PgError("could not serialize access", pgcode))
        assert is_conflict(exc) is True

    def test_stale_row(self):
        assert is_conflict(StaleDataError("expected to update 1 row(s); 0 were matched")) is True

    def test_unique_violation_is_not_conflict(self):
        exc = IntegrityError("INSERT INTO voters ...", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert is_conflict(exc) is False

    def test_other_operational_error(self):
        exc = OperationalError("SELECT ...", {}, sqlite3.OperationalError("no such table: voters"))
        assert is_conflict(exc) is False

    def test_non_database_error(self):
        assert is_conflict(ValueError("bad")) is False


class TestTransaction:
    """Tests for transaction()."""

    def test_commits(self, engine, store, make_voter):
        voter = make_voter()

        with transaction(engine) as session:
            row = session.get(Voter, voter.id)
            row.occupation = "Engineer"
            session.add(row)

        assert store.get_voter(voter.id).occupation == "Engineer"

    def test_conflict_raised_as_storage_conflict(self, engine, store, make_voter):
        voter = make_voter()

        with pytest.raises(StorageConflict) as exc:
            with transaction(engine) as session:
                row = session.get(Voter, voter.id)
                row.occupation = "Engineer"
                session.add(row)
                session.flush()
                raise _locked()

        assert isinstance(exc.value.__cause__, OperationalError)
        assert exc.value.status_code == 409
        assert store.get_voter(voter.id).occupation is None

    def test_other_errors_propagate_unchanged(self, engine, store, make_voter):
        voter = make_voter()

        with pytest.raises(ValueError):
            with transaction(engine) as session:
                row = session.get(Voter, voter.id)
                row.occupation = "Engineer"
                session.add(row)
                session.flush()
                raise ValueError("boom")

        assert store.get_voter(voter.id).occupation is None


class TestConflictResponse:
    def test_conflict_is_409(self, services, make_voter, monkeypatch):
        voter = make_voter()

        def _conflict(*args, **kwargs):
            raise StorageConflict("Concurrent update detected; retry the operation")

        monkeypatch.setattr(services.store, "set_verification", _conflict)
        client = TestClient(create_app(services=services))

        r = client.put(
            f"/api/admin/voters/{voter.id}/verification",
            json={"verified": True},
            headers={"X-Actor-Id": "1", "X-Actor-Role": "admin"},
        )

        assert r.status_code == 409
        assert r.json()["success"] is False
        assert r.json()["error"]["code"] == "STORAGE_CONFLICT"
