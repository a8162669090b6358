"""
database.py - Database Configuration

Sets up the connection to SQLite and the session factory that the
telemetry store and the alert engine share.

SQLite only enforces ON DELETE CASCADE when foreign keys are switched on
for each connection, so every connection the pool opens gets
PRAGMA foreign_keys=ON before it is used.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from hostmon import config

# Base is the parent class for all our database models
Base = declarative_base()


def make_engine(url: str) -> Engine:
    """
    Creates an engine (with its connection pool) for the given URL.

    check_same_thread=False lets pooled SQLite connections be used from
    FastAPI's worker threads and the scheduler thread.
    """
    in_memory = url in ("sqlite://", "sqlite:///:memory:")
    kwargs = {"connect_args": {"check_same_thread": False}}
    if in_memory:
        # One shared connection, otherwise every checkout sees an empty database
        kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            # Readers keep going while a sample is being written
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Creates any missing tables and indexes."""
    # Importing models registers the tables on Base.metadata
    from hostmon import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


# The application's default engine and session factory
engine = make_engine(config.DATABASE_URL)
SessionLocal = make_session_factory(engine)
