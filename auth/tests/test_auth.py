# auth/tests/test_auth.py
"""
Tests for accounts, passwords and login sessions.

The SQLite file comes from the root conftest; ``user`` is a registered
account with password "Password123".
"""

from __future__ import annotations

import pytest
from datetime import datetime, timedelta


# =============================================================================
# Models
# =============================================================================


class TestModels:
    """User and Session records."""

    def test_new_user_normalizes_email(self):
        from auth.models import User

        user = User.new(email="  Payer@Example.COM ", password_hash="hash")

        assert user.email == "payer@example.com"
        assert len(user.id) == 36

    def test_user_public_view(self):
        from auth.models import User

        data = User.new(email="payer@example.com", password_hash="secret_hash").to_dict()

        assert "password_hash" not in data
        assert "secret_hash" not in data.values()
        assert set(data) == {"id", "email", "createdAt", "updatedAt"}

    def test_session_lifetime(self):
        from auth.models import Session, SESSION_DURATION_DAYS

        default = Session.new(user_id="user-123")
        month = Session.new(user_id="user-123", duration_days=30)

        assert (default.expires_at - default.created_at).days == SESSION_DURATION_DAYS
        assert (month.expires_at - month.created_at).days == 30
        assert default.is_valid is True

    def test_expired_session_not_valid(self):
        from auth.models import Session

        session = Session(
            id="s-1",
            user_id="user-123",
            expires_at=datetime.utcnow() - timedelta(seconds=1),
        )
        assert session.is_valid is False

    def test_session_from_row(self):
        from auth.models import Session

        row = {
            "id": "s-1",
            "user_id": "user-123",
            "created_at": "2025-01-01T00:00:00",
            "expires_at": "2025-01-08T00:00:00",
            "ip_address": None,
            "user_agent": "curl/8.0",
        }

        session = Session.from_row(row)

        assert session.expires_at == datetime(2025, 1, 8)
        assert session.user_agent == "curl/8.0"
        assert session.is_valid is False


# =============================================================================
# Passwords
# =============================================================================


class TestPasswords:
    """bcrypt hashing and the strength rule applied at registration."""

    def test_hash_and_verify(self):
        from auth.password import hash_password, verify_password

        hashed = hash_password("Password123")

        assert hashed.startswith("$2b$")
        assert hashed != hash_password("Password123")  # salted
        assert verify_password("Password123", hashed) is True
        assert verify_password("Password124", hashed) is False

    def test_hash_rejects_empty_and_oversized(self):
        from auth.password import hash_password

        with pytest.raises(ValueError, match="empty"):
            hash_password("")
        with pytest.raises(ValueError, match="72 bytes"):
            hash_password("a1" * 40)

    def test_verify_never_raises(self):
        from auth.password import verify_password

        assert verify_password("", "somehash") is False
        assert verify_password("Password123", "") is False
        assert verify_password("Password123", "not-a-bcrypt-hash") is False

    @pytest.mark.parametrize(
        "password, reason",
        [
            ("Pass1", "8 characters"),
            ("12345678", "letter"),
            ("PasswordOnly", "digit"),
            ("é1" * 40, "72 bytes"),
        ],
    )
    def test_weak_passwords(self, password, reason):
        from auth.password import check_password_strength

        ok, message = check_password_strength(password)

        assert ok is False
        assert reason in message

    def test_strong_password(self):
        from auth.password import check_password_strength

        assert check_password_strength("Password1") == (True, "")


# =============================================================================
# Accounts
# =============================================================================


class TestAccounts:
    """Registration, lookup and login."""

    def test_create_user_stores_hash(self, user):
        from auth.service import get_user_by_id

        stored = get_user_by_id(user.id)

        assert stored.email == "test@example.com"
        assert stored.password_hash != "Password123"

    def test_email_unique_case_insensitive(self, user):
        from auth.service import create_user, UserExistsError

        with pytest.raises(UserExistsError):
            create_user("TEST@example.com", "Different123")

    def test_weak_password_rejected(self):
        from auth.service import create_user, get_user_by_email, WeakPasswordError

        with pytest.raises(WeakPasswordError, match="8 characters"):
            create_user("weak@example.com", "weak1")

        assert get_user_by_email("weak@example.com") is None

    def test_lookup_missing(self):
        from auth.service import get_user_by_email, get_user_by_id

        assert get_user_by_email("nobody@example.com") is None
        assert get_user_by_id("no-such-id") is None

    def test_authenticate(self, user):
        from auth.service import authenticate_user

        assert authenticate_user(" Test@Example.com", "Password123").id == user.id

    def test_wrong_password_and_unknown_email_look_alike(self, user):
        from auth.service import authenticate_user, InvalidCredentialsError

        with pytest.raises(InvalidCredentialsError) as wrong_password:
            authenticate_user("test@example.com", "Password124")
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            authenticate_user("nobody@example.com", "Password123")

        assert str(wrong_password.value) == str(unknown_email.value)


# =============================================================================
# Sessions
# =============================================================================


class TestSessions:
    """Session cookies resolving to users."""

    def test_session_resolves_user(self, user):
        from auth.service import create_session, get_current_user

        session = create_session(user.id, ip_address="10.0.0.1", user_agent="pytest")

        assert get_current_user(session.id).id == user.id

    def test_session_metadata_persisted(self, user):
        from auth.service import create_session, get_session

        created = create_session(user.id, ip_address="10.0.0.1", user_agent="pytest")
        stored = get_session(created.id)

        assert stored.ip_address == "10.0.0.1"
        assert stored.user_agent == "pytest"

    @pytest.mark.parametrize("session_id", [None, "", "no-such-session"])
    def test_no_user_without_session(self, session_id):
        from auth.service import get_current_user

        assert get_current_user(session_id) is None

    def test_expired_session_deleted(self, user):
        from auth.service import get_session
        from persistence.db import get_db

        past = (datetime.utcnow() - timedelta(days=1)).isoformat()
        with get_db() as conn:
            conn.execute(
                "INSERT INTO sessions (id, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
                ("stale", user.id, past, past),
            )

        assert get_session("stale") is None

        with get_db() as conn:
            assert conn.execute("SELECT 1 FROM sessions WHERE id = 'stale'").fetchone() is None

    def test_logout_invalidates(self, user):
        from auth.service import create_session, get_current_user, invalidate_session

        session = create_session(user.id)

        assert invalidate_session(session.id) is True
        assert invalidate_session(session.id) is False
        assert get_current_user(session.id) is None
