from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from activity_dedup.config.settings import settings
from activity_dedup.dedup.errors import DeduplicationError


def _is_postgresql(url: str) -> bool:
    return "postgres" in url.lower()


def _validate_postgresql_driver() -> None:
    """Validate PostgreSQL driver is installed when using PostgreSQL.

    Must actually import psycopg2 (not just locate it) because SQLAlchemy
    will try to import it when creating the engine.
    """
    try:
        import psycopg2  # noqa: F401
    except ImportError as e:
        logger.error("⚠️ CRITICAL: PostgreSQL driver (psycopg2) is not installed! Install activity-dedup[postgres]")
        raise ImportError("PostgreSQL driver required. Install with: pip install psycopg2-binary") from e
    logger.info("PostgreSQL driver (psycopg2) is available")


def _engine_options(url: str) -> dict[str, Any]:
    """create_engine() keyword arguments for the configured backend."""
    if _is_postgresql(url):
        return {
            "connect_args": {"connect_timeout": 10, "application_name": "activity-dedup"},
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
    return {"connect_args": {"check_same_thread": False}}


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # Cascades on child rows and SET NULL on duplicate_of rely on it
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def check_database_connection() -> None:
    """Test database connection."""
    try:
        with _get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("✅ Database connection test successful")
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        raise


# Created on first use, never at import time
_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        url = settings.database_url
        logger.info(f"Initializing database engine: {url}")

        if _is_postgresql(url):
            _validate_postgresql_driver()
        else:
            logger.warning("Using SQLite database (local development only)")

        _engine = create_engine(url, echo=False, **_engine_options(url))
        if url.startswith("sqlite"):
            _enable_sqlite_foreign_keys(_engine)
        logger.info("Database engine initialized")
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
        logger.info("Database session factory initialized")
    return _SessionLocal


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits on success. Deduplication errors (invalid input, vanished rows) are
    rolled back and re-raised without being logged as database failures; any
    other exception is logged, rolled back and re-raised.
    """
    session = _get_session_local()()
    try:
        yield session
        # Merges issue bulk UPDATE/DELETE statements, which never show up in session.dirty
        session.commit()
    except DeduplicationError as e:
        logger.debug(f"{type(e).__name__} in session, rolling back: {e}")
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Database session error, rolling back: {e}. Error type: {type(e).__name__}")
        session.rollback()
        raise
    finally:
        session.close()
