"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like a temp DB and the civil timezone.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("LLM_API_KEY", "fake-llm-key-for-tests")
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("CIVIL_UTC_OFFSET_MINUTES", "480")

from datetime import timedelta, timezone

import pytest

CIVIL = timezone(timedelta(hours=8))


@pytest.fixture
def tz():
    return CIVIL


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_reminders.db")


@pytest.fixture
def reminder_db(tmp_db_path):
    """Return a ReminderDB instance backed by a temp file."""
    from src.data.db import ReminderDB
    return ReminderDB(db_path=tmp_db_path)


@pytest.fixture
def pending_db(tmp_db_path):
    """Return a PendingConfirmationDB sharing the temp file with reminder_db."""
    from src.data.db import PendingConfirmationDB
    return PendingConfirmationDB(db_path=tmp_db_path)
