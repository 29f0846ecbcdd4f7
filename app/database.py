"""
Database configuration with connection pooling and schema bootstrap.

PostgreSQL in production, SQLite for local development and tests. Schema
creation is an idempotent, externally triggered bootstrap step:

    python -m app.database
"""

import time
import logging
from typing import Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(database_url: str, statement_timeout_seconds: Optional[float] = None) -> Engine:
    """
    Build an engine for the given URL.

    PostgreSQL connections get pool tuning and a server-side statement
    timeout; SQLite connections get foreign key enforcement.
    """
    timeout_ms = int((statement_timeout_seconds or settings.repository_timeout_seconds) * 1000)

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def enable_sqlite_foreign_keys(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    engine = create_engine(
        database_url,
        pool_size=15,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=True,
        connect_args={
            "connect_timeout": 10,
            "options": f"-c statement_timeout={timeout_ms}",
        },
    )

    @event.listens_for(engine, "connect")
    def set_connection_timeout(dbapi_conn, connection_record):
        """Set connection-level timeouts."""
        with dbapi_conn.cursor() as cursor:
            cursor.execute("SET idle_in_transaction_session_timeout = '60s'")

    return engine


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Get database session with automatic cleanup.

    Yields:
        Database session
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        db.rollback()
        logger.error(f"Database session error: {e}", exc_info=True)
        raise
    finally:
        db.close()


def init_schema(bind: Optional[Engine] = None) -> None:
    """
    Create all archive tables if they do not exist.

    Safe to run repeatedly; never called from request-time code.
    """
    # Models must be imported so their tables are registered on Base.metadata
    import app.models  # noqa: F401

    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info("Schema bootstrap complete", extra={"tables": sorted(Base.metadata.tables)})


def check_database_health() -> dict:
    """
    Check database health and connectivity.

    Returns:
        Dictionary with health status and metrics
    """
    try:
        start_time = time.time()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        response_time = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "dialect": engine.dialect.name,
            "response_time_ms": round(response_time, 2),
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "error": str(e),
        }


if __name__ == "__main__":
    from app.logging_config import setup_logging

    setup_logging()
    init_schema()
