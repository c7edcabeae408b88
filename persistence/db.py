# persistence/db.py
"""
SQLite database connection and schema management.

Holds users, login sessions, billing customers, consumed checkout
sessions and processed webhook events. Point BILLING_DB_PATH at a
persistent volume in production.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

_logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "billing.db"
DB_PATH = Path(os.environ.get("BILLING_DB_PATH", str(DEFAULT_DB_PATH)))

# One connection per thread, reopened if DB_PATH changes
_local = threading.local()
_init_lock = threading.Lock()
_initialized = False

_TABLES = ("webhook_events", "checkout_sessions", "customers", "sessions", "users")


def _get_connection() -> sqlite3.Connection:
    """Get thread-local database connection."""
    path = str(DB_PATH)
    conn = getattr(_local, "connection", None)

    if conn is not None and getattr(_local, "path", None) != path:
        conn.close()
        conn = None

    if conn is None:
        if path != ":memory:":
            DB_PATH.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(path, timeout=30.0, check_same_thread=False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.row_factory = sqlite3.Row
        _local.connection = conn
        _local.path = path

    return conn


@contextmanager
def get_db():
    """
    Get database connection context manager.

    Commits on success, rolls back if the block raises.

    Usage:
        with get_db() as conn:
            cursor = conn.execute("SELECT ...")
    """
    conn = _get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db() -> None:
    """
    Initialize database schema.

    Creates tables if they don't exist.
    Safe to call multiple times (idempotent).
    """
    global _initialized

    with _init_lock:
        if _initialized:
            return

        with get_db() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    password_hash TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    ip_address TEXT,
                    user_agent TEXT,
                    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_sessions_user
                ON sessions(user_id)
            """)

            # Billing customers (one per user, provider id never reassigned)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS customers (
                    user_id TEXT PRIMARY KEY,
                    customer_stripe_id TEXT NOT NULL UNIQUE,
                    email TEXT,
                    subscription_id TEXT,
                    subscription_status TEXT,
                    price_id TEXT,
                    subscription_expire TEXT,
                    cancel_at_period_end INTEGER NOT NULL DEFAULT 0,
                    trial_eligible INTEGER NOT NULL DEFAULT 0,
                    trial_expires_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_customers_subscription
                ON customers(subscription_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS checkout_sessions (
                    id TEXT PRIMARY KEY,
                    customer_stripe_id TEXT NOT NULL,
                    subscription_id TEXT,
                    consumed_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS webhook_events (
                    id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    received_at TEXT NOT NULL
                )
            """)

            _logger.info(f"Database initialized at {DB_PATH}")
            _initialized = True


def close_db() -> None:
    """Close thread-local database connection."""
    if getattr(_local, "connection", None) is not None:
        _local.connection.close()
        _local.connection = None
        _local.path = None


def reset_db() -> None:
    """Reset database (for testing). Drops all tables."""
    global _initialized

    with _init_lock:
        with get_db() as conn:
            for table in _TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        _initialized = False


def get_db_path() -> Path:
    """Get the database file path."""
    return DB_PATH
