"""Core domain models: recipients, notification entries, content items and guilds.

- Recipient: a user who receives personal digests, owns NotificationEntries
- NotificationEntry: a saved search (keywords) plus its delivery lifecycle state
- ContentItem / Screening: a movie and its upcoming screenings
- GuildConfiguration: a broadcast destination with its own cron schedule
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_TIMEZONE = "Europe/Vienna"
DEFAULT_LOCALE = "en-US"


def _to_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class KeywordType(str, Enum):
    """How a keyword is compared against content items."""

    TITLE = "title"
    FEATURE = "feature"


class Keyword(BaseModel):
    """A single search term. Title keywords match fuzzily, feature keywords exactly."""

    type: KeywordType
    value: str = Field(..., description="Search term, trimmed")

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Keyword value cannot be empty or whitespace-only")
        return stripped

    model_config = {"frozen": True}


class NotificationEntry(BaseModel):
    """A recipient's saved search together with its lifecycle counters.

    ``deliveries_sent`` is only tracked when ``max_deliveries`` is set; it is
    normalised to 0 in that case and to None otherwise.
    """

    id: Optional[int] = Field(None, description="Store-assigned identifier")
    recipient_id: str
    name: str
    keywords: List[Keyword] = Field(..., min_length=1)
    max_deliveries: Optional[int] = Field(None, ge=0)
    deliveries_sent: Optional[int] = Field(None, ge=0)
    cooldown_days: int = Field(1, ge=0, description="Minimum days between deliveries")
    expires_at: Optional[date] = Field(None, description="Last day is the day before")
    deactivated_at: Optional[datetime] = None
    last_delivered_at: Optional[datetime] = None
    keep_after_expiration: bool = False

    @field_validator("name", "recipient_id")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped

    @field_validator("deactivated_at", "last_delivered_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _to_utc(v)

    @model_validator(mode="after")
    def normalise_counter(self):
        if self.max_deliveries is None:
            self.deliveries_sent = None
        elif self.deliveries_sent is None:
            self.deliveries_sent = 0
        return self

    @property
    def quota_tracked(self) -> bool:
        return self.max_deliveries is not None

    @property
    def is_deactivated(self) -> bool:
        return self.deactivated_at is not None

    @property
    def title_keywords(self) -> List[Keyword]:
        return [k for k in self.keywords if k.type == KeywordType.TITLE]

    @property
    def feature_keywords(self) -> List[Keyword]:
        return [k for k in self.keywords if k.type == KeywordType.FEATURE]


class Recipient(BaseModel):
    """A user receiving personal digests."""

    recipient_id: str
    timezone: str = DEFAULT_TIMEZONE
    locale: str = DEFAULT_LOCALE
    entries: List[NotificationEntry] = Field(default_factory=list)

    @field_validator("recipient_id")
    @classmethod
    def strip_id(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("recipient_id cannot be empty")
        return stripped


class Screening(BaseModel):
    """One showing of a content item."""

    start_time: datetime = Field(..., description="Start of the screening (UTC)")
    auditorium: str
    features: List[str] = Field(default_factory=list, description="Attribute keys, e.g. 3d, atmos")

    @field_validator("start_time")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _to_utc(v)

    @field_validator("features")
    @classmethod
    def strip_features(cls, v: List[str]) -> List[str]:
        return [f.strip() for f in v if f and f.strip()]

    @property
    def feature_set(self) -> frozenset:
        return frozenset(f.lower() for f in self.features)


class ContentItem(BaseModel):
    """A movie with its (future) screenings."""

    item_id: str
    title: str
    description: Optional[str] = None
    age_rating: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, ge=0)
    genres: List[str] = Field(default_factory=list)
    screenings: List[Screening] = Field(default_factory=list)

    @field_validator("item_id", "title")
    @classmethod
    def strip_required(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("Field cannot be empty or whitespace-only")
        return stripped

    @property
    def features(self) -> frozenset:
        """Union of the lower-cased features of all screenings."""
        collected = set()
        for screening in self.screenings:
            collected |= screening.feature_set
        return frozenset(collected)

    def with_screenings(self, screenings: List[Screening]) -> "ContentItem":
        return self.model_copy(update={"screenings": list(screenings)})


class GuildConfiguration(BaseModel):
    """A broadcast destination.

    A guild without its own ``schedule`` follows the configured default
    broadcast pattern.
    """

    guild_id: str
    channel_id: Optional[str] = None
    schedule: Optional[str] = None
    notifications_disabled: bool = False
    timezone: str = DEFAULT_TIMEZONE
    locale: str = DEFAULT_LOCALE

    def effective_schedule(self, default_pattern: str) -> str:
        return self.schedule or default_pattern

    @property
    def can_receive(self) -> bool:
        return not self.notifications_disabled and bool(self.channel_id)
