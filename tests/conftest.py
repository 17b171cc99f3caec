"""Shared fixtures."""

import pytest

from showtime_notifier.logging.context import clear_log_context
from showtime_notifier.persistence import close_database, init_database


@pytest.fixture
def memory_db():
    """Fresh in-memory database, shared by every thread of the test."""
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture(autouse=True)
def clean_log_context():
    clear_log_context()
    yield
    clear_log_context()
