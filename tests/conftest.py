"""
Pytest configuration and fixtures for ChatGuard tests.
"""

import os
import sys
import tempfile
from pathlib import Path

# Keep test runs from writing log files into the repository.
os.environ.setdefault("CHATGUARD_LOG_DIR", tempfile.mkdtemp(prefix="chatguard-logs-"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import pytest
import pytest_asyncio

from chatguard.database.history_store import HistoryStore
from chatguard.profanity.profanity_index import ProfanityIndex


@pytest.fixture
def db_path(tmp_path):
    """Path for a fresh history database inside the test's temp directory."""
    return tmp_path / "history" / "chat_history.db"


@pytest_asyncio.fixture
async def store(db_path):
    """Opened history store, closed after the test."""
    history = HistoryStore(db_path)
    await history.open()
    yield history
    await history.close()


@pytest.fixture
def index():
    """Profanity index with the built-in word list and no notification delay."""
    return ProfanityIndex(debounce_seconds=0)


@pytest.fixture
def bare_index():
    """Profanity index without built-in words, for tests that pick their own list."""
    return ProfanityIndex(default_words=(), debounce_seconds=0)
