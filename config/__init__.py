"""
Configuration module.

Exports:
    settings: Application settings instance
    get_settings: Function to get settings (for dependency injection)
    get_engine / get_session_factory: SQLAlchemy plumbing
    DatabaseSession: Unit-of-work context manager
    check_connection: Health check function
"""

from config.settings import settings, get_settings, Settings
from config.database import (
    build_engine,
    get_engine,
    get_session_factory,
    init_db,
    check_connection,
    reset_connection,
    DatabaseSession,
)

__all__ = [
    # Settings
    "settings",
    "get_settings",
    "Settings",

    # Database
    "build_engine",
    "get_engine",
    "get_session_factory",
    "init_db",
    "check_connection",
    "reset_connection",
    "DatabaseSession",
]
