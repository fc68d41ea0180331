"""Sync engine and sessions for the job store (psycopg on Postgres, WAL on SQLite)."""

from __future__ import annotations

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from .config import settings


def _is_sqlite(url: URL) -> bool:
    return url.drivername.startswith("sqlite")


def sync_url(url: URL) -> URL:
    """Bare `postgresql://` gets the psycopg driver; everything else is used as given."""
    if url.drivername == "postgresql":
        return url.set(drivername="postgresql+psycopg")
    return url


raw_url: URL = make_url(settings.database_url)

if _is_sqlite(raw_url):
    # Worker, admin API and migrations each open their own file connection
    engine = create_engine(
        raw_url,
        connect_args={
            "check_same_thread": False,
            "timeout": max(0.0, settings.sqlite_busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        """WAL lets the status API read while the worker writes a run's jobs."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA synchronous=NORMAL;")
        cursor.execute(f"PRAGMA busy_timeout={int(settings.sqlite_busy_timeout_ms)};")
        cursor.close()
else:
    engine = create_engine(
        sync_url(raw_url),
        pool_pre_ping=True,
        pool_size=max(1, int(settings.db_pool_size)),
        max_overflow=max(0, int(settings.db_max_overflow)),
        pool_timeout=max(1, int(settings.db_pool_timeout_s)),
        pool_recycle=max(0, int(settings.db_pool_recycle_s)),
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Create the job tables on SQLite. Postgres schema belongs to Alembic."""
    if not _is_sqlite(raw_url):
        return
    from .models import Base
    Base.metadata.create_all(bind=engine)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
