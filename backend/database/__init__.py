"""
Database package for PostgreSQL integration
"""
from .config import postgres_settings, tracker_settings
from .connection import (
    Base,
    get_engine,
    get_session_maker,
    init_postgres_db,
    check_database_connection,
    get_postgres_session,
    close_postgres_db
)
from .models import (
    Company,
    Profile,
    Project,
    MaterialRequest
)

__all__ = [
    # Config
    "postgres_settings",
    "tracker_settings",
    # Connection
    "Base",
    "get_engine",
    "get_session_maker",
    "init_postgres_db",
    "check_database_connection",
    "get_postgres_session",
    "close_postgres_db",
    # Models
    "Company",
    "Profile",
    "Project",
    "MaterialRequest"
]
