"""SQLAlchemy database session management.

This module provides database engine configuration, the session factory
the SQL stores draw from, and table creation.
"""

import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from src.server.config import settings

logger = logging.getLogger(__name__)

# SQLAlchemy declarative base for ORM models
Base = declarative_base()

# Global engine instance
_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def init_engine() -> Engine:
    """Initialize SQLAlchemy engine.

    Creates the database directory if it doesn't exist. The engine is
    shared across worker threads because the async stores run their
    queries through ``asyncio.to_thread``.

    Returns:
        Configured SQLAlchemy engine
    """
    global _engine

    if _engine is not None:
        return _engine

    # Ensure database directory exists
    db_dir = settings.get_database_path().parent
    if not db_dir.exists():
        db_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created database directory: {db_dir}")

    _engine = create_engine(
        settings.database_url,
        connect_args={"check_same_thread": False},  # Needed for SQLite across threads
        pool_pre_ping=True,
    )

    logger.info(f"Database engine initialized: {settings.database_url}")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get SQLAlchemy session factory.

    Returns:
        Configured sessionmaker instance
    """
    global _SessionLocal

    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=init_engine())

    return _SessionLocal


def create_tables(engine: Engine | None = None) -> None:
    """Create all database tables.

    Args:
        engine: Engine to create tables on (defaults to the global engine)
    """
    # Register models on Base.metadata
    from src.server.database import models  # noqa: F401

    engine = engine or init_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


def check_database_connection() -> bool:
    """Check if database connection is working.

    Returns:
        True if connection is successful, False otherwise
    """
    try:
        with init_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
