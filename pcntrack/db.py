"""Database handle and session management."""
from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from fastapi import Depends, Request
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pcntrack.models.base import Base


def _engine_kwargs(url: str) -> dict[str, object]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


def _install_sqlite_hooks(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries on pysqlite so SAVEPOINT works."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


class Database:
    """Explicit storage handle created at startup and disposed on shutdown."""

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        self.engine: Engine = create_engine(url, future=True, echo=echo, **_engine_kwargs(url))
        if url.startswith("sqlite"):
            _install_sqlite_hooks(self.engine)
        self.sessionmaker: sessionmaker[Session] = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that is always closed, rolling back on error."""

        session = self.sessionmaker()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def create_all(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> None:
        """Raise if the database cannot answer a trivial query."""

        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def current_revision(self) -> str | None:
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT version_num FROM alembic_version")).scalar()

    def dispose(self) -> None:
        self.engine.dispose()


def get_database(request: Request) -> Database:
    """Return the handle attached to the application at startup."""

    database = getattr(request.app.state, "database", None)
    if database is None:
        raise RuntimeError("Database handle is not initialised; the app lifespan has not run.")
    return database


def get_db(database: Database = Depends(get_database)) -> Generator[Session, None, None]:
    """Provide a database session for FastAPI dependencies."""

    session = database.sessionmaker()
    try:
        yield session
    finally:
        session.close()


__all__ = ["Base", "Database", "get_database", "get_db"]
