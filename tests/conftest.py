"""
Shared fixtures for journal testing.

Every test runs against its own temp-directory SQLite file with settings
reloaded from a clean environment, so nothing leaks between tests.
"""

import pytest

from tradejournal.journal.models import User
from tradejournal.journal.store import JournalStore
from tradejournal.utils.config import reload_settings


@pytest.fixture(autouse=True)
def clean_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "journal.db"))
    monkeypatch.setenv("LOG_FILE", "")
    monkeypatch.setenv("AI_GATEWAY_KEY", "test-key")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")
    monkeypatch.setenv("TWELVE_DATA_API_KEY", "")
    monkeypatch.setenv("FINNHUB_API_KEY", "")
    monkeypatch.setenv("TICKER_ENABLED", "false")
    settings = reload_settings()
    yield settings
    reload_settings()


@pytest.fixture
def store(tmp_path):
    s = JournalStore(str(tmp_path / "store.db"))
    yield s
    s.close()


@pytest.fixture
def user(store):
    return store.create_user(User(email="trader@example.com", name="Trader"))


@pytest.fixture
def other_user(store):
    return store.create_user(User(email="other@example.com", name="Other"))
