"""Exceptions raised by the public operations of the notifier."""

from typing import Optional


class NotifierError(Exception):
    """Base class for all engine errors."""


class ValidationError(NotifierError):
    """Input rejected before any state was mutated."""


class InvalidScheduleError(ValidationError):
    """Cron pattern could not be parsed."""

    def __init__(self, pattern: str, reason: Optional[str] = None):
        self.pattern = pattern
        self.reason = reason
        message = f"Invalid cron pattern: {pattern!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class EmptyKeywordsError(ValidationError):
    """A notification entry was submitted without any keyword."""


class InvalidDateError(ValidationError):
    """Malformed expiration date, or one that lies in the past."""

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid date {value!r}: {reason}")


class InvalidPreferenceError(ValidationError):
    """Unknown timezone or locale."""


class DuplicateEntryError(ValidationError):
    """The recipient already has an entry with this name."""

    def __init__(self, recipient_id: str, name: str):
        self.recipient_id = recipient_id
        self.name = name
        super().__init__(f"Recipient {recipient_id} already has an entry named {name!r}")


class NotFoundError(NotifierError):
    """Referenced recipient, entry or guild does not exist."""


class NotDeactivatedError(NotifierError):
    """Reactivation requested for an entry that is still active."""

    def __init__(self, recipient_id: str, name: str):
        self.recipient_id = recipient_id
        self.name = name
        super().__init__(f"Entry {name!r} of recipient {recipient_id} is not deactivated")
