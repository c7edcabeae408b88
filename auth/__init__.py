"""
Authentication for the billing API.

Cookie sessions identify the user whose billing customer a request
acts on; passwords are hashed with bcrypt.
"""

from auth.models import User, Session
from auth.service import (
    AuthError,
    create_user,
    authenticate_user,
    create_session,
    invalidate_session,
    get_current_user,
    get_user_by_id,
)

__all__ = [
    "User",
    "Session",
    "AuthError",
    "create_user",
    "authenticate_user",
    "create_session",
    "invalidate_session",
    "get_current_user",
    "get_user_by_id",
]
