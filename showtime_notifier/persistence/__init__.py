"""Persistence layer: SQLAlchemy engine, sessions and repositories.

Example usage:
    >>> from showtime_notifier.persistence import init_database, get_session, GuildRepository
    >>> init_database("sqlite:///./data/showtime_notifier.db")
    >>> with get_session() as session:
    ...     guild = GuildRepository(session).get("4321")
"""

from .database import close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ContentRepository,
    GuildRepository,
    NotificationEntryRepository,
    RecipientRepository,
)

__all__ = [
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "RecipientRepository",
    "NotificationEntryRepository",
    "ContentRepository",
    "GuildRepository",
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
