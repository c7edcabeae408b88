# auth/middleware.py
"""
FastAPI authentication dependencies.

Session cookie helpers and the user dependencies used by route handlers.
"""

from __future__ import annotations

from typing import Optional
from fastapi import Request, Response, HTTPException

from auth.models import User
from auth.service import get_current_user

SESSION_COOKIE_NAME = "billing_session"
SESSION_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days in seconds


def get_session_id(request: Request) -> Optional[str]:
    """Extract session ID from request cookies."""
    return request.cookies.get(SESSION_COOKIE_NAME)


def set_session_cookie(response: Response, session_id: str, secure: bool = False) -> None:
    """Set the HTTP-only session cookie on a response."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        samesite="lax",
    )


def get_optional_user(request: Request) -> Optional[User]:
    """
    FastAPI dependency: Get current user if logged in.

    Returns None for anonymous users (no error).
    """
    return get_current_user(get_session_id(request))


def get_required_user(request: Request) -> User:
    """
    FastAPI dependency: Get current user (required).

    Raises 401 if not logged in.
    """
    user = get_optional_user(request)
    if not user:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
        )
    return user
