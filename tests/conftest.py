"""Shared test fixtures and configuration.

Sets up fake environment variables so timelog.config doesn't sys.exit(),
and provides common fixtures like a temp DB.
"""

import os

# Patch env vars BEFORE any timelog imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "gemini")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "UTC")

import pytest


USER_ID = 12345


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_timelog.db")


@pytest.fixture
def tracker_db(tmp_db_path):
    """Return a TrackerDB backed by a temp file, closed after the test."""
    from timelog.data.db import TrackerDB
    db = TrackerDB(db_path=tmp_db_path)
    yield db
    db.close()


@pytest.fixture
def store(tracker_db):
    """Return the async store adapter over tracker_db."""
    from timelog.adapters.sqlite_store import SQLiteTrackerStore
    return SQLiteTrackerStore(tracker_db)


@pytest.fixture
def reconciler(store):
    from timelog.core.reconciler import LogReconciler
    return LogReconciler(store)


@pytest.fixture
def reading(tracker_db):
    """A registered "Reading" activity measured in pages."""
    return tracker_db.add_activity(
        USER_ID, "Reading", category="Personal", goal=300, unit="Pages",
    )
