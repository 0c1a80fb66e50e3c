"""
Database connection management.

Provides the SQLAlchemy engine, session factory and the DatabaseSession
context manager every service write goes through.
"""

from functools import lru_cache
from typing import Callable, Optional

import structlog
from sqlalchemy import create_engine, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config.settings import settings

logger = structlog.get_logger(__name__)


def build_engine(url: str, echo: bool = False, isolation_level: Optional[str] = None) -> Engine:
    """
    Create an engine for the given URL.

    In-memory SQLite gets a StaticPool so every session shares the same
    database; file SQLite allows cross-thread use for the ASGI worker pool.
    """
    kwargs: dict = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True
    if isolation_level:
        kwargs["isolation_level"] = isolation_level
    return create_engine(url, **kwargs)


@lru_cache()
def get_engine() -> Engine:
    """
    Get cached engine instance.

    Call reset_connection() to rebuild it after config changes.
    """
    logger.info(
        "creating_database_engine",
        url=settings.database_url.split("@")[-1][:40]  # Never log credentials
    )
    return build_engine(
        settings.database_url,
        echo=settings.database_echo,
        isolation_level=settings.database_isolation_level,
    )


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Get cached session factory bound to the engine."""
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


class DatabaseSession:
    """
    Context manager for one unit of work with logging.

    Commits when the block exits cleanly, rolls back on any exception and
    always closes the session. Exceptions are never suppressed.

    Usage:
        with DatabaseSession("reconcile_palletization") as session:
            session.add(row)
    """

    def __init__(
        self,
        operation_name: str,
        session_factory: Optional[Callable[[], Session]] = None
    ):
        self.operation_name = operation_name
        self.session_factory = session_factory or get_session_factory()
        self.session: Optional[Session] = None

    def __enter__(self) -> Session:
        logger.debug(
            "db_operation_start",
            operation=self.operation_name
        )
        self.session = self.session_factory()
        return self.session

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type:
                self.session.rollback()
                logger.error(
                    "db_operation_failed",
                    operation=self.operation_name,
                    error=str(exc_val),
                    error_type=exc_type.__name__
                )
            else:
                self.session.commit()
                logger.debug(
                    "db_operation_complete",
                    operation=self.operation_name
                )
        finally:
            self.session.close()
        return False  # Don't suppress exceptions


# ===================
# HELPER FUNCTIONS
# ===================

def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables that do not exist yet."""
    from db.base import Base
    import db.tables  # noqa: F401  registers the mappers

    Base.metadata.create_all(engine or get_engine())
    logger.info("database_tables_ready")


def check_connection() -> dict:
    """
    Check database connection health.

    Returns:
        dict: Connection status with details
    """
    from db.tables import Product

    try:
        with get_session_factory()() as session:
            session.execute(text("SELECT 1"))
            products = session.scalar(select(func.count()).select_from(Product))

        return {
            "status": "healthy",
            "products_count": products or 0
        }

    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e)
        }


def reset_connection():
    """
    Reset the cached engine and session factory.

    Call this if connection becomes stale or after config changes.
    """
    get_session_factory.cache_clear()
    get_engine.cache_clear()
    logger.info("database_connection_reset")
