"""
Database connection and session management.

PostgreSQL in production (several API workers, row locks on attempts);
SQLite for local development and an in-memory SQLite database for tests.
Provides the engine, the session factory and the FastAPI session dependency.
"""

import os
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

# Read database URL from environment
# Fallback to a SQLite file when PostgreSQL is not configured
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///./exam_engine.db"
)

IN_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def engine_options(url: str) -> dict:
    """create_engine keyword arguments for a database URL."""
    options = {"echo": False}
    if url.startswith("postgresql"):
        options.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_pre_ping": True,
        })
    elif url.startswith("sqlite"):
        # API threads and the expiry sweeper share connections
        options["connect_args"] = {"check_same_thread": False}
        if url in IN_MEMORY_URLS:
            # One shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
    return options


engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL))

if DATABASE_URL.startswith("sqlite"):
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if DATABASE_URL not in IN_MEMORY_URLS:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


def get_db():
    """
    FastAPI dependency that provides a database session.

    The session is closed after the request even when an engine error was
    raised halfway through an attempt update.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=SessionLocal):
    """Session for work outside a request (sweeper, loader script)."""
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """
    Create all tables directly (SQLite local dev and tests).
    PostgreSQL deployments run the Alembic migrations instead.
    """
    Base.metadata.create_all(bind=engine)


def drop_tables():
    """Drop every table known to the metadata."""
    Base.metadata.drop_all(bind=engine)
