"""
Database configuration and session management for the curation service
"""
import logging
import os
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Create declarative base for all models
Base = declarative_base()

# Session factory; bound to an engine by init_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

engine = None


def _sanitize_url(database_url: str) -> str:
    """Hide the password part of a database URL for logging."""
    if '@' in database_url:
        parts = database_url.split('@')
        return parts[0].split(':')[0] + ':***@' + parts[1]
    return database_url[:30] + "..."


def create_sqlite_engine(database_url="sqlite://", **kwargs):
    """
    Create a SQLite engine with foreign keys enforced.

    ON DELETE CASCADE / SET NULL only fire when the pragma is on.
    """
    sqlite_engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        **kwargs
    )

    @event.listens_for(sqlite_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def create_db_engine(database_url=None):
    """
    Create SQLAlchemy engine with connection pooling

    Args:
        database_url: Optional database URL override

    Returns:
        SQLAlchemy engine instance
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise ValueError("DATABASE_URL environment variable not set")

    logger.info(f"Connecting to: {_sanitize_url(database_url)}")

    if database_url.startswith("sqlite"):
        # SQLite (local runs, tests) has no server-side pool to tune
        return create_sqlite_engine(database_url)

    engine_start = time.time()
    new_engine = create_engine(
        database_url,
        pool_size=5,               # Base connection pool size
        max_overflow=10,           # Max additional connections
        pool_pre_ping=True,        # Verify connections before use
        pool_recycle=3600,         # Recycle connections after 1 hour
        connect_args={"connect_timeout": 30},
        echo=os.getenv("FLASK_DEBUG", "False") == "True"  # SQL logging in debug mode
    )
    logger.info(f"Engine created in {time.time() - engine_start:.1f}s")
    return new_engine


def init_engine(database_url=None):
    """
    Create the default engine and bind SessionLocal to it.

    Safe to call more than once; later calls rebind the factory.
    """
    global engine
    engine = create_db_engine(database_url)
    SessionLocal.configure(bind=engine)
    return engine


def get_session_factory():
    """Return SessionLocal, binding it to DATABASE_URL on first use."""
    if engine is None:
        init_engine()
    return SessionLocal


@contextmanager
def session_scope(session_factory=None):
    """
    Transactional scope around a series of operations.

    Usage:
        with session_scope(factory) as session:
            session.query(Article).all()
    """
    factory = session_factory or get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
