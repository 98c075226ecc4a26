"""Database session management for ScreenGate.

Provides:
- SessionLocal: Session factory bound to the configured engine
- get_db_session: Transactional context manager
- init_db: Initialize database schema (creates tables)
"""

from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from loguru import logger

from .config import get_engine
from .models import Base

_SessionLocal = None


def get_session_factory() -> sessionmaker:
    """Get or create the session factory."""
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = make_session_factory(get_engine())

    return _SessionLocal


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def SessionLocal() -> Session:
    """Create a new database session."""
    factory = get_session_factory()
    return factory()


@contextmanager
def get_db_session(factory: Optional[Callable[[], Session]] = None) -> Generator[Session, None, None]:
    """
    Context manager for a transactional session.

    Commits on success, rolls back on any exception.

    Example:
        with get_db_session() as db:
            jobs = db.query(ScreenResult).all()
    """
    session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Initialize the database by creating all tables.

    Note: In production, use Alembic migrations instead.
    This function is useful for development and testing.
    """
    engine = engine or get_engine()

    logger.info("Initializing database schema...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema initialized successfully")


def check_db_connection(engine: Optional[Engine] = None) -> bool:
    """
    Verify database connection is working.

    Returns:
        True if connection successful, raises exception otherwise
    """
    engine = engine or get_engine()

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("Database connection verified")
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        raise


def reset_session_factory() -> None:
    """Forget the cached engine and session factory (after DATABASE_URL changes)."""
    global _SessionLocal

    _SessionLocal = None
    get_engine.cache_clear()
