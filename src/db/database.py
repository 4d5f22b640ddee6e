"""
Database engine and session management for the channel ingestion system.

This module provides database connectivity with:
- Engine construction from an explicit URL (SQLite or PostgreSQL)
- Session-per-operation pattern for the ingestion workers
- NullPool connection pooling for SQLite to avoid locking issues
- SQLite optimization settings (WAL mode, foreign keys, timeouts)

Nothing here reads the environment: the caller passes the URL it resolved at
startup.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from .models import Base
from src.logger import log_function

db_logger = logging.getLogger("database")

SUPPORTED_BACKENDS = ("sqlite", "postgresql")


@log_function(logger_name="database", log_result=True)
def validate_database_url(url: str) -> tuple[bool, str]:
    """Validate the database URL format and, for SQLite, its file path."""
    if not url:
        return False, "DATABASE_URL is not set"
    try:
        parsed = make_url(url)
    except ArgumentError as e:
        return False, f"Invalid database URL format: {e}"

    backend = parsed.get_backend_name()
    if backend not in SUPPORTED_BACKENDS:
        return False, f"Unsupported database backend: {backend}"

    if backend == "postgresql":
        return True, parsed.render_as_string(hide_password=True)

    db_path = parsed.database or ""
    if not db_path or db_path == ":memory:":
        # Every NullPool connection would see its own empty database
        return False, "SQLite database must be a file path"

    parent_dir = Path(db_path).parent
    if not parent_dir.exists():
        return False, f"Database directory does not exist: {parent_dir}"

    return True, db_path


def optimize_sqlite_connection(dbapi_connection, connection_record):
    """Apply SQLite-specific optimizations when connection is created."""
    cursor = dbapi_connection.cursor()

    # WAL lets the loader read while ingestion workers write
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA synchronous=NORMAL")

    cursor.close()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Build a SQLAlchemy engine for the given URL.

    Raises:
        ValueError: If the URL is invalid or names an unsupported backend.
    """
    is_valid, db_info = validate_database_url(database_url)
    if not is_valid:
        db_logger.error(f"Database configuration error: {db_info}")
        raise ValueError(f"Database configuration error: {db_info}")

    if make_url(database_url).get_backend_name() == "sqlite":
        engine = create_engine(
            database_url,
            poolclass=NullPool,
            echo=echo,
            connect_args={
                "check_same_thread": False,  # sessions run in worker threads
                "timeout": 30,
            },
        )
        event.listen(engine, "connect", optimize_sqlite_connection)
    else:
        engine = create_engine(database_url, echo=echo, pool_pre_ping=True)

    db_logger.info(f"Database configured: {db_info}")
    return engine


@contextmanager
def get_db_session(engine: Engine) -> Generator[Session, None, None]:
    """
    Context manager for database sessions (session-per-operation pattern).

    Provides automatic session cleanup, rollback on error, and logging. The
    original exception stays attached as __cause__ so retry classification can
    still inspect driver error codes.

    Usage:
        with get_db_session(engine) as session:
            session.add(channel)
            session.commit()
    """
    session = Session(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        db_logger.debug("Database session created")
        yield session

    except OperationalError as e:
        db_logger.error(f"Database operational error: {e}")
        session.rollback()

        error_msg = str(e.orig) if getattr(e, "orig", None) is not None else str(e)
        if "no such table" in error_msg.lower():
            raise OperationalError(
                "Database table does not exist. Run migrations or pass --init-db first.",
                None,
                e.orig,
            ) from e
        raise

    except SQLAlchemyError as e:
        db_logger.error(f"Database error: {e}")
        session.rollback()
        raise

    except Exception as e:
        db_logger.error(f"Unexpected database error: {e}")
        session.rollback()
        raise

    finally:
        session.close()
        db_logger.debug("Database session closed")


@log_function(logger_name="database")
def check_database_connection(engine: Engine) -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection is successful, False otherwise
    """
    try:
        with get_db_session(engine) as session:
            session.execute(text("SELECT 1"))
            db_logger.info("Database connection test successful")
            return True

    except SQLAlchemyError as e:
        db_logger.error(f"Database connection test failed: {e}")
        return False


@log_function(logger_name="database")
def init_database(engine: Engine) -> None:
    """
    Create all tables defined in models that do not exist yet.

    Note: This does not run Alembic migrations. Use alembic commands for migrations.
    """
    Base.metadata.create_all(bind=engine)
    db_logger.info("Database tables created successfully")


def close_database(engine: Engine) -> None:
    """Release every pooled connection held by the engine."""
    engine.dispose()
    db_logger.debug("Database engine disposed")
