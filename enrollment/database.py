from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import SQLModel, Session, create_engine

from .errors import StorageConflict


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _is_postgres(database_url: str) -> bool:
    return database_url.startswith("postgresql")


def _ensure_sqlite_dir(database_url: str) -> None:
    """
    Ensure the parent folder exists for SQLite file-based DB URLs like:
      sqlite:///./data/enrollment.sqlite
      sqlite:////absolute/path/to/db.sqlite
    """
    if not database_url.startswith("sqlite:///"):
        return

    path = database_url.replace("sqlite:///", "", 1)
    folder = os.path.dirname(path)
    if folder:
        os.makedirs(folder, exist_ok=True)


def _sqlite_pragmas(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")  # references cascade with their voter
        cursor.execute("PRAGMA busy_timeout=5000;")
        cursor.execute("PRAGMA cache_size=-64000;")
        cursor.close()


def _postgres_session_settings(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_postgres_settings(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        # A row lock held by a stuck request must not block other admins forever
        cursor.execute("SET statement_timeout = 30000;")
        cursor.execute("SET lock_timeout = 10000;")
        cursor.close()


def get_engine(database_url: str, *, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the canonical store.

    - SQLite gets pragmas + check_same_thread=False for FastAPI worker threads
    - Postgres gets statement/lock timeouts so row-lock waits are bounded
    """
    if _is_sqlite(database_url):
        _ensure_sqlite_dir(database_url)

    connect_args = {"check_same_thread": False} if _is_sqlite(database_url) else {}

    engine = create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        pool_pre_ping=True,
    )

    if _is_sqlite(database_url):
        _sqlite_pragmas(engine)

    if _is_postgres(database_url):
        _postgres_session_settings(engine)

    return engine


def register_models() -> None:
    """
    Central place to import ALL models so SQLModel registers them.
    """
    from .models.admin import Admin  # noqa: F401
    from .models.voter import Voter  # noqa: F401
    from .models.reference import Reference  # noqa: F401
    from .models.audit_log import AuditLogEntry  # noqa: F401


def init_db(engine: Engine, create_tables: bool = True) -> None:
    """
    Register models, then create missing tables.
    Non-destructive: create_all will not drop or alter existing tables.
    """
    register_models()
    if create_tables:
        SQLModel.metadata.create_all(engine)


def is_conflict(exc: Exception) -> bool:
    """
    True for database errors that mean "someone else holds / changed this row".

    Covers SQLite "database is locked", Postgres serialization failures,
    deadlocks and lock timeouts, and ORM stale-row detection.
    """
    if isinstance(exc, StaleDataError):
        return True
    if not isinstance(exc, DBAPIError) or isinstance(exc, IntegrityError):
        return False
    code = getattr(getattr(exc, "orig", None), "pgcode", None)
    if code in ("40001", "40P01", "55P03"):
        return True
    if isinstance(exc, OperationalError):
        msg = str(getattr(exc, "orig", exc)).lower()
        return "locked" in msg or "lock timeout" in msg or "deadlock" in msg or "serialize" in msg
    return False


@contextmanager
def transaction(engine: Engine) -> Generator[Session, None, None]:
    """
    One canonical unit of work: commit on success, roll back on any error.

    Lock/serialization failures are re-raised as StorageConflict so callers
    know to retry the whole operation. Other errors propagate unchanged.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        if is_conflict(exc):
            raise StorageConflict("Concurrent update detected; retry the operation") from exc
        raise
    finally:
        session.close()


@contextmanager
def read_session(engine: Engine) -> Generator[Session, None, None]:
    """
    Read-only session. Sees committed state only; never commits.
    """
    with Session(engine, expire_on_commit=False) as session:
        yield session
