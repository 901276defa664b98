"""
Engine and session lifecycle.

The engine is built lazily from Settings (DATABASE_URL, then POSTGRES_URL,
then a local SQLite file). Tests and scripts swap it with configure_engine.
Request handlers get a session per request through get_db; scripts use
get_db_context, which commits on success.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from aivis.utils.config import Settings, get_settings
from .models import Base

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


# =============================================================================
# ENGINE
# =============================================================================

def get_database_url(settings: Optional[Settings] = None) -> str:
    settings = settings or get_settings()
    url = settings.DATABASE_URL or settings.POSTGRES_URL
    if not url:
        logger.warning(f"No DATABASE_URL set, using SQLite at {settings.SQLITE_PATH}")
        return f"sqlite:///{settings.SQLITE_PATH}"
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on the foreign_keys pragma for every new SQLite connection."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(url: Optional[str] = None, settings: Optional[Settings] = None) -> Engine:
    settings = settings or get_settings()
    url = url or get_database_url(settings)

    if url.startswith("postgresql"):
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_recycle=1800,
            pool_pre_ping=True,
            echo=settings.SQL_DEBUG,
        )
        logger.info("Created PostgreSQL engine")
        return engine

    # Batches and request handlers share the engine across threads
    engine = create_engine(url, connect_args={"check_same_thread": False}, echo=settings.SQL_DEBUG)
    enable_sqlite_foreign_keys(engine)
    logger.info(f"Created SQLite engine for {url}")
    return engine


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine()
    return _engine


def configure_engine(engine: Optional[Engine]) -> None:
    """Install an engine (None resets to lazy creation) and drop the session factory."""
    global _engine, _SessionLocal
    _engine = engine
    _SessionLocal = None


# =============================================================================
# SESSIONS
# =============================================================================

def get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        # Artifacts are read after commit when building responses
        _SessionLocal = sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session for FastAPI's Depends; callers commit."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Session that commits on success and rolls back on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =============================================================================
# SCHEMA
# =============================================================================

def init_db(drop_all: bool = False) -> None:
    engine = get_engine()
    if drop_all:
        logger.warning("Dropping all tables")
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database ready ({len(Base.metadata.tables)} tables)")


def check_db_connection() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
    return True
