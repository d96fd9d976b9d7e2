# core/db.py
"""
Database management for the MLM commission core.
Single database, sessions per unit of work.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session

from config import Config
from core.exceptions import StoreUnavailable
from models.base import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Database engines
_engine: Optional[Engine] = None
_SessionFactory = None


def _create_engine(database_url: str) -> Engine:
    """Create engine; SQLite gets a busy timeout so concurrent writers wait instead of failing."""
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            echo=False,
            connect_args={"timeout": 30, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        echo=False,
        pool_pre_ping=True
    )


def get_engine() -> Engine:
    """Get or create database engine."""
    global _engine
    if _engine is None:
        database_url = Config.get(Config.DATABASE_URL, "sqlite:///mlm.db")
        _engine = _create_engine(database_url)
        logger.info(f"Database engine created: {database_url}")
    return _engine


def configure_database(database_url: str) -> Engine:
    """
    Point the module at a specific database (tests, scripts).

    Disposes the previous engine if any.
    """
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = _create_engine(database_url)
    _SessionFactory = None
    logger.info(f"Database configured: {database_url}")
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine, expire_on_commit=False)
        logger.info("Session factory created")
    return _SessionFactory


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session instance
    """
    factory = get_session_factory()
    return factory()


def run_in_transaction(
        work: Callable[[Session], T],
        session_factory=None,
        attempts: Optional[int] = None,
        backoff: float = 0.05
) -> T:
    """
    Run work(session) in its own transaction, retrying transient store errors.

    Domain errors raised by work() roll back and propagate immediately.
    OperationalError is retried up to `attempts` times, then surfaced as
    StoreUnavailable.

    Args:
        work: Callable receiving an open session; its return value is returned
        session_factory: Factory to open sessions from (defaults to module factory)
        attempts: Max attempts (defaults to Config.STORE_RETRY_ATTEMPTS)
        backoff: Base sleep between attempts in seconds

    Returns:
        Whatever work() returned
    """
    factory = session_factory or get_session_factory()
    maxAttempts = attempts or Config.get(Config.STORE_RETRY_ATTEMPTS, 3)

    lastError = None
    for attempt in range(1, maxAttempts + 1):
        session = factory()
        try:
            result = work(session)
            session.commit()
            return result
        except OperationalError as e:
            session.rollback()
            lastError = e
            logger.warning(
                f"Transient store error (attempt {attempt}/{maxAttempts}): {e}"
            )
            if attempt < maxAttempts:
                time.sleep(backoff * attempt)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    raise StoreUnavailable(f"Store unavailable after {maxAttempts} attempts: {lastError}")


def setup_database():
    """Initialize database - create all tables."""
    import models  # noqa: F401  (registers all tables on Base.metadata)

    logger.info("Setting up database...")
    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info("Database setup completed")

