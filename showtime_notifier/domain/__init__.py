"""Domain models for the showtime notifier."""

from .models import (
    DEFAULT_LOCALE,
    DEFAULT_TIMEZONE,
    ContentItem,
    GuildConfiguration,
    Keyword,
    KeywordType,
    NotificationEntry,
    Recipient,
    Screening,
)

__all__ = [
    "ContentItem",
    "GuildConfiguration",
    "Keyword",
    "KeywordType",
    "NotificationEntry",
    "Recipient",
    "Screening",
    "DEFAULT_LOCALE",
    "DEFAULT_TIMEZONE",
]
