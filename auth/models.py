# auth/models.py
"""
Account records behind the session cookie.

A User owns at most one billing Customer (billing.models), keyed by
User.id. Rows come back from SQLite with ISO-8601 timestamps.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

SESSION_DURATION_DAYS = 7


def _new_id() -> str:
    return str(uuid.uuid4())


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class User:
    """
    Registered account.

    Attributes:
        id: UUID, also the ``user_id`` metadata on the Stripe customer
        email: Login name, stored normalized
        password_hash: bcrypt hash
    """
    id: str
    email: str
    password_hash: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, email: str, password_hash: str) -> User:
        now = datetime.utcnow()
        return cls(
            id=_new_id(),
            email=normalize_email(email),
            password_hash=password_hash,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_row(cls, row) -> User:
        return cls(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def to_dict(self) -> dict:
        """Public view; the password hash never leaves the service."""
        return {
            "id": self.id,
            "email": self.email,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Session:
    """Login session; ``id`` is the cookie value."""
    id: str
    user_id: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    expires_at: datetime = field(
        default_factory=lambda: datetime.utcnow() + timedelta(days=SESSION_DURATION_DAYS)
    )
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        duration_days: int = SESSION_DURATION_DAYS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Session:
        now = datetime.utcnow()
        return cls(
            id=_new_id(),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(days=duration_days),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    @classmethod
    def from_row(cls, row) -> Session:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
        )

    @property
    def is_valid(self) -> bool:
        return datetime.utcnow() < self.expires_at
