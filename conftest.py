"""Configure pytest for the billing API."""
import os

import pytest

# Set environment for tests BEFORE any app imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("STRIPE_TEST_MODE", "true")


@pytest.fixture(autouse=True)
def fresh_database(tmp_path, monkeypatch):
    """
    Point persistence at an empty SQLite file for each test.

    A file (not :memory:) so TestClient worker threads see the same data.
    """
    import persistence.db as db_module

    db_module.close_db()
    monkeypatch.setattr(db_module, "DB_PATH", tmp_path / "billing.db")
    monkeypatch.setattr(db_module, "_initialized", False)
    db_module.init_db()
    yield
    db_module.close_db()


@pytest.fixture
def user():
    """A registered user."""
    from auth.service import create_user
    return create_user("test@example.com", "Password123")
