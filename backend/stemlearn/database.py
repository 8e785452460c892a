"""Database engine and helpers.

This module configures the SQLModel/SQLAlchemy engine from
`settings.DATABASE_URL` (a local SQLite file by default) and provides the
session dependencies used by the application and tests.
"""

from sqlmodel import SQLModel, create_engine, Session
from .config import settings

_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, echo=False, connect_args=_connect_args)


def create_db_and_tables():
    """Create database tables using SQLModel metadata.

    Intended for local development and the demo seed script; the models
    module must be imported first so every table is registered.
    """
    from . import models  # noqa: F401
    SQLModel.metadata.create_all(engine)


def get_session():
    """Yield a database `Session` for FastAPI dependency injection.

    The generator yields a session and ensures it is closed when the
    request scope finishes.
    """
    with Session(engine) as session:
        yield session


def open_session() -> Session:
    """Open a standalone session outside of a request scope."""
    return Session(engine)


def get_session_factory():
    """FastAPI dependency returning a callable that opens new sessions.

    Background work scheduled by a request outlives the request session,
    so it receives a factory instead of the session itself.
    """
    return open_session
