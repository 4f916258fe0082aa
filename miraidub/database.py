"""
database.py — Database Configuration & Session Management
===========================================================

Uses SQLAlchemy with:
  • SQLite for development (zero config)
  • PostgreSQL for production (via DATABASE_URL env var)

Every request and every queue delivery gets its own session; nothing
is shared between invocations.
"""

import os
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

# Use Postgres in production, SQLite in dev
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///./miraidub.db"
)

# Handle SQLite-specific args
connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def enable_sqlite_foreign_keys(target_engine) -> None:
    """SQLite ignores ON DELETE clauses unless foreign keys are switched on."""
    if target_engine.dialect.name != "sqlite":
        return

    @event.listens_for(target_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


enable_sqlite_foreign_keys(engine)


def get_db():
    """FastAPI dependency that yields a DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables — call on startup."""
    # Import models so they register on Base.metadata
    from miraidub import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
