"""
Engine and session wiring for the Panels store.

DATABASE_URL selects the backend:
- postgresql:// (or postgres://, normalized): pooled engine for the API and
  the change propagation worker
- sqlite:// : local development and the test suite

Services nest SAVEPOINTs (the notifier inserts under begin_nested), so SQLite
engines get pysqlite's transaction handling replaced by explicit BEGIN.
"""

import os
import logging
from typing import AsyncIterator, Iterator, Optional

from fastapi import HTTPException, status
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def normalize_database_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_panels_engine(database_url: str) -> Engine:
    """
    Build an engine for the given URL.

    In-memory SQLite shares one connection (StaticPool) so every session
    sees the same database.
    """
    database_url = normalize_database_url(database_url)

    if database_url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            options["poolclass"] = StaticPool
        engine = create_engine(database_url, **options)
        _enable_sqlite_savepoints(engine)
    else:
        engine = create_engine(
            database_url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_recycle=1800,
        )

    logger.info("Database engine created", extra={"dialect": engine.dialect.name})
    return engine


def get_engine() -> Engine:
    """Process-wide engine for DATABASE_URL. Raises ValueError when it is unset."""
    global _engine
    if _engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            logger.error("DATABASE_URL environment variable is not set")
            raise ValueError("DATABASE_URL environment variable is not set")
        _engine = create_panels_engine(database_url)
    return _engine


def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False)
    return _SessionLocal


async def get_db_session() -> AsyncIterator[Session]:
    """Request-scoped session for the API routes; 503 until DATABASE_URL is set."""
    try:
        session_factory = get_session_factory()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_db_session_sync() -> Iterator[Session]:
    """Session for the change propagation worker and other scripts."""
    try:
        session_factory = get_session_factory()
    except ValueError as e:
        raise RuntimeError(f"Database not configured: {e}")

    session = session_factory()
    try:
        yield session
    finally:
        session.close()
