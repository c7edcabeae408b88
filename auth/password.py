# auth/password.py
"""
Password hashing with bcrypt.

bcrypt only looks at the first 72 bytes of its input, so longer
passwords are rejected up front instead of being silently truncated.
"""

from __future__ import annotations

import bcrypt
import logging

_logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Raises:
        ValueError: If the password is empty or longer than 72 bytes
    """
    if not password:
        raise ValueError("Password cannot be empty")

    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password cannot exceed {MAX_PASSWORD_BYTES} bytes")

    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Return True if password matches the stored bcrypt hash."""
    if not password or not password_hash:
        return False

    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        return False

    try:
        return bcrypt.checkpw(password_bytes, password_hash.encode("utf-8"))
    except ValueError as e:
        # Malformed stored hash
        _logger.warning(f"Password verification error: {e}")
        return False


def check_password_strength(password: str) -> tuple[bool, str]:
    """
    Check minimum strength: 8+ characters, at least one letter and one digit.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password cannot be empty"

    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False, f"Password cannot exceed {MAX_PASSWORD_BYTES} bytes"

    if not any(c.isalpha() for c in password):
        return False, "Password must contain at least one letter"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one digit"

    return True, ""
