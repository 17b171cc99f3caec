"""Persistence layer exceptions.

Every store failure surfaces as a PersistenceError subclass so callers can
handle them with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""


class DatabaseConnectionError(PersistenceError):
    """Engine creation, connection validation or session setup failed."""


class RecordNotFoundError(PersistenceError):
    """A row the operation depends on does not exist."""


class DataIntegrityError(PersistenceError):
    """A constraint (unique name per recipient, foreign key, ...) was violated."""
