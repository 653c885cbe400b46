"""Engine and session factory configuration."""

from collections.abc import Generator
import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from dataport.core.config import get_settings
from dataport.db.base import Base

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_kwargs(url: str) -> dict[str, Any]:
    """Pooling and keepalive options; only meaningful for PostgreSQL."""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # pool_pre_ping: test connections before using (handles stale connections)
    # pool_recycle: recycle connections after 30 minutes
    return {
        "poolclass": QueuePool,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
        "pool_size": 5,
        "max_overflow": 10,
        "connect_args": {
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    }


def enable_sqlite_savepoints(sqlite_engine: Engine) -> Engine:
    """Let pysqlite run SAVEPOINTs (begin_nested) inside an ORM transaction.

    The driver's own transaction handling is switched off and SQLAlchemy
    emits BEGIN itself.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return sqlite_engine


def build_engine(url: str) -> Engine:
    built = create_engine(url, echo=False, future=True, **_engine_kwargs(url))
    if url.startswith("sqlite"):
        enable_sqlite_savepoints(built)
    return built


engine: Engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def init_db(bind: Engine | None = None) -> None:
    """Create all tables (bootstrap for local runs and tests)."""
    from dataport.db import models  # noqa: F401  (register mappers)

    Base.metadata.create_all(bind=bind or engine)


def get_fresh_session() -> Session:
    """Get a fresh database session, handling connection errors.

    Worker invocations can outlive pooled connections; on a connection error
    the pool is disposed and a new session is opened once.
    """
    try:
        return SessionLocal()
    except (OperationalError, DisconnectionError) as e:
        logger.warning(f"Connection error creating session: {e}, retrying...")
        engine.dispose()
        return SessionLocal()


def get_db() -> Generator[Session, None, None]:
    """Yield a transactional session for request/worker lifecycles."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
