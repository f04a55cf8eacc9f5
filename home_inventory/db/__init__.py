"""Database package."""

from home_inventory.db.models import Base, User
from home_inventory.db.session import (
    SERIALIZABLE,
    DbSession,
    create_engine_from_settings,
    create_session_factory,
    get_db_session,
)

__all__ = [
    "SERIALIZABLE",
    "DbSession",
    "get_db_session",
    "create_engine_from_settings",
    "create_session_factory",
    "Base",
    "User",
]
