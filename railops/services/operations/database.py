"""
Database engine setup and connection management for the operations store.
"""
import logging
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from railops.config import settings

logger = logging.getLogger(__name__)


def is_memory_database(database_url: str) -> bool:
    """True for SQLite URLs that point at an in-memory database."""
    return database_url.rstrip("/") == "sqlite:" or ":memory:" in database_url or "mode=memory" in database_url


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine with foreign keys enabled on SQLite.

    Only in-memory SQLite shares a single connection; file databases keep the
    default pool so every Session owns its connection and transaction.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    engine_options = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if is_memory_database(database_url):
        engine_options["poolclass"] = StaticPool  # one connection keeps the memory database alive
    sqlite_engine = create_engine(database_url, **engine_options)

    @event.listens_for(sqlite_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


engine = create_db_engine(settings.database_url, echo=settings.sql_echo)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for ORM models
Base = declarative_base()


def get_db_session():
    """Get a database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Initialize database tables."""
    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info(f"Database initialized at {settings.database_url}")
    except Exception as e:
        logger.error(f"Failed to initialize database: {str(e)}")
        raise


def drop_db(bind: Engine = None):
    """Drop all database tables (for testing/reset)."""
    try:
        Base.metadata.drop_all(bind=bind or engine)
        logger.info("Database dropped")
    except Exception as e:
        logger.error(f"Failed to drop database: {str(e)}")
        raise
