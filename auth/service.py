# auth/service.py
"""
Accounts and login sessions.

The payment routes only call get_current_user() to turn the session
cookie into a User; registration and login back /api/auth.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.models import Session, User, normalize_email
from auth.password import check_password_strength, hash_password, verify_password
from persistence.db import get_db, init_db

_logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base authentication error."""
    pass


class UserExistsError(AuthError):
    """Email is already registered."""
    pass


class WeakPasswordError(AuthError):
    """Password rejected by check_password_strength."""
    pass


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password (deliberately indistinguishable)."""
    pass


# =============================================================================
# Users
# =============================================================================


def _fetch_user(column: str, value: str) -> Optional[User]:
    init_db()

    with get_db() as conn:
        row = conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()

    return User.from_row(row) if row else None


def get_user_by_email(email: str) -> Optional[User]:
    return _fetch_user("email", normalize_email(email))


def get_user_by_id(user_id: str) -> Optional[User]:
    return _fetch_user("id", user_id)


def create_user(email: str, password: str) -> User:
    """
    Register an account.

    Raises:
        WeakPasswordError: Password too short, too long, or missing a letter/digit
        UserExistsError: Email (case-insensitive) already registered
    """
    ok, reason = check_password_strength(password)
    if not ok:
        raise WeakPasswordError(reason)

    if get_user_by_email(email):
        raise UserExistsError(f"Email already registered: {normalize_email(email)}")

    user = User.new(email=email, password_hash=hash_password(password))

    with get_db() as conn:
        conn.execute(
            "INSERT INTO users (id, email, password_hash, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (user.id, user.email, user.password_hash, user.created_at.isoformat(), user.updated_at.isoformat()),
        )

    _logger.info(f"Registered user {user.id}")
    return user


def authenticate_user(email: str, password: str) -> User:
    """Raises InvalidCredentialsError unless the email/password pair matches."""
    user = get_user_by_email(email)

    if user is None or not verify_password(password, user.password_hash):
        _logger.warning("Rejected login")
        raise InvalidCredentialsError("Invalid email or password")

    return user


# =============================================================================
# Sessions
# =============================================================================


def create_session(
    user_id: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Session:
    init_db()

    session = Session.new(user_id=user_id, ip_address=ip_address, user_agent=user_agent)

    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO sessions (id, user_id, created_at, expires_at, ip_address, user_agent)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                session.id,
                session.user_id,
                session.created_at.isoformat(),
                session.expires_at.isoformat(),
                session.ip_address,
                session.user_agent,
            ),
        )

    _logger.debug(f"Opened session for user {user_id}")
    return session


def get_session(session_id: str) -> Optional[Session]:
    """Live session by id; an expired one is deleted and reported missing."""
    init_db()

    with get_db() as conn:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()

    if row is None:
        return None

    session = Session.from_row(row)
    if not session.is_valid:
        invalidate_session(session_id)
        return None
    return session


def invalidate_session(session_id: str) -> bool:
    """Returns False if there was no such session."""
    init_db()

    with get_db() as conn:
        cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        return cursor.rowcount > 0


def get_current_user(session_id: Optional[str]) -> Optional[User]:
    """User behind a session cookie, or None for a missing/unknown/expired session."""
    if not session_id:
        return None

    session = get_session(session_id)
    return get_user_by_id(session.user_id) if session else None
