"""
Persistence package for the ICU dispatch backend.
"""

from .connection import Base, init_db, get_db, get_db_session, create_db_engine
from .store import EntityStore, new_id

__all__ = [
    "Base",
    "init_db",
    "get_db",
    "get_db_session",
    "create_db_engine",
    "EntityStore",
    "new_id"
]
