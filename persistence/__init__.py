# persistence/__init__.py
"""
Persistence layer.

SQLite-backed storage for users, sessions and billing customers.
"""

from persistence.db import get_db, init_db, close_db, reset_db

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "reset_db",
]
