"""ORM models and their conversion to domain models.

Timestamps are stored as fixed-width ISO-8601 UTC strings and dates as
``YYYY-MM-DD`` strings, so both compare correctly as text inside SQL
statements.
"""

import json
import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

from showtime_notifier.domain.models import (
    ContentItem,
    GuildConfiguration,
    Keyword,
    NotificationEntry,
    Recipient,
    Screening,
)
from showtime_notifier.utils.timestamps import format_timestamp, parse_iso_date, parse_iso_datetime

logger = logging.getLogger(__name__)

Base = declarative_base()

class RecipientModel(Base):
    """Users that receive personal digests."""

    __tablename__ = "recipients"

    recipient_id = Column(String(64), primary_key=True, nullable=False)
    timezone = Column(String(64), nullable=False)
    locale = Column(String(16), nullable=False)
    created_at = Column(String(32), nullable=False)

    entries = relationship(
        "NotificationEntryModel",
        back_populates="recipient",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="NotificationEntryModel.id",
    )

    def to_domain(self, include_entries: bool = True) -> Recipient:
        return Recipient(
            recipient_id=self.recipient_id,
            timezone=self.timezone,
            locale=self.locale,
            entries=[entry.to_domain() for entry in self.entries] if include_entries else [],
        )


class NotificationEntryModel(Base):
    """Saved searches and their delivery lifecycle counters."""

    __tablename__ = "notification_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    recipient_id = Column(
        String(64),
        ForeignKey("recipients.recipient_id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(String(255), nullable=False)
    max_deliveries = Column(Integer, nullable=True)
    deliveries_sent = Column(Integer, nullable=True)
    cooldown_days = Column(Integer, nullable=False, default=1)
    expires_at = Column(String(10), nullable=True)
    deactivated_at = Column(String(32), nullable=True)
    last_delivered_at = Column(String(32), nullable=True)
    keep_after_expiration = Column(Boolean, nullable=False, default=False)
    created_at = Column(String(32), nullable=False)

    recipient = relationship("RecipientModel", back_populates="entries")
    keywords = relationship(
        "NotificationKeywordModel",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="NotificationKeywordModel.position",
    )

    __table_args__ = (
        UniqueConstraint("recipient_id", "name", name="uq_entries_recipient_name"),
        Index("idx_entries_expires_at", "expires_at"),
    )

    def to_domain(self) -> NotificationEntry:
        return NotificationEntry(
            id=self.id,
            recipient_id=self.recipient_id,
            name=self.name,
            keywords=[keyword.to_domain() for keyword in self.keywords],
            max_deliveries=self.max_deliveries,
            deliveries_sent=self.deliveries_sent,
            cooldown_days=self.cooldown_days,
            expires_at=_parse_date(self.expires_at),
            deactivated_at=_parse_datetime(self.deactivated_at),
            last_delivered_at=_parse_datetime(self.last_delivered_at),
            keep_after_expiration=bool(self.keep_after_expiration),
        )

    @classmethod
    def from_domain(cls, entry: NotificationEntry, created_at: datetime) -> "NotificationEntryModel":
        return cls(
            recipient_id=entry.recipient_id,
            name=entry.name,
            max_deliveries=entry.max_deliveries,
            deliveries_sent=entry.deliveries_sent,
            cooldown_days=entry.cooldown_days,
            expires_at=_format_date(entry.expires_at),
            deactivated_at=_format_datetime(entry.deactivated_at),
            last_delivered_at=_format_datetime(entry.last_delivered_at),
            keep_after_expiration=entry.keep_after_expiration,
            created_at=_format_datetime(created_at),
            keywords=[
                NotificationKeywordModel(position=position, type=keyword.type.value, value=keyword.value)
                for position, keyword in enumerate(entry.keywords)
            ],
        )


class NotificationKeywordModel(Base):
    __tablename__ = "notification_keywords"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(
        Integer,
        ForeignKey("notification_entries.id", ondelete="CASCADE"),
        nullable=False,
    )
    position = Column(Integer, nullable=False)
    type = Column(String(16), nullable=False)
    value = Column(Text, nullable=False)

    __table_args__ = (Index("idx_keywords_entry", "entry_id"),)

    def to_domain(self) -> Keyword:
        return Keyword(type=self.type, value=self.value)


class ContentItemModel(Base):
    """Movies written by the scraper."""

    __tablename__ = "content_items"

    item_id = Column(String(128), primary_key=True, nullable=False)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    age_rating = Column(String(32), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    genres = Column(Text, nullable=False, default="[]")
    updated_at = Column(String(32), nullable=False)

    screenings = relationship(
        "ScreeningModel",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScreeningModel.start_time",
    )

    def to_domain(self, screenings: Optional[List["ScreeningModel"]] = None) -> ContentItem:
        rows = self.screenings if screenings is None else screenings
        return ContentItem(
            item_id=self.item_id,
            title=self.title,
            description=self.description,
            age_rating=self.age_rating,
            duration_minutes=self.duration_minutes,
            genres=_load_list(self.genres),
            screenings=[row.to_domain() for row in rows],
        )


class ScreeningModel(Base):
    __tablename__ = "screenings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(
        String(128),
        ForeignKey("content_items.item_id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time = Column(String(32), nullable=False)
    auditorium = Column(String(128), nullable=False)
    features = Column(Text, nullable=False, default="[]")

    __table_args__ = (Index("idx_screenings_item_start", "item_id", "start_time"),)

    def to_domain(self) -> Screening:
        return Screening(
            start_time=_parse_datetime(self.start_time),
            auditorium=self.auditorium,
            features=_load_list(self.features),
        )

    @classmethod
    def from_domain(cls, screening: Screening) -> "ScreeningModel":
        return cls(
            start_time=_format_datetime(screening.start_time),
            auditorium=screening.auditorium,
            features=json.dumps(screening.features, ensure_ascii=False),
        )


class GuildConfigurationModel(Base):
    """Broadcast destinations and their schedules."""

    __tablename__ = "guild_configurations"

    guild_id = Column(String(64), primary_key=True, nullable=False)
    channel_id = Column(String(64), nullable=True)
    schedule = Column(String(128), nullable=True)
    notifications_disabled = Column(Boolean, nullable=False, default=False)
    timezone = Column(String(64), nullable=False)
    locale = Column(String(16), nullable=False)

    def to_domain(self) -> GuildConfiguration:
        return GuildConfiguration(
            guild_id=self.guild_id,
            channel_id=self.channel_id,
            schedule=self.schedule,
            notifications_disabled=bool(self.notifications_disabled),
            timezone=self.timezone,
            locale=self.locale,
        )

    def apply(self, config: GuildConfiguration) -> None:
        self.channel_id = config.channel_id
        self.schedule = config.schedule
        self.notifications_disabled = config.notifications_disabled
        self.timezone = config.timezone
        self.locale = config.locale


def _load_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    value = json.loads(raw)
    return [str(v) for v in value] if isinstance(value, list) else []


def _format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC representation, e.g. 2026-03-01T12:00:00.000000Z.

    The fixed width keeps stored values lexicographically ordered.
    """
    if dt is None:
        return None
    return format_timestamp(dt, include_microseconds=True)


def _parse_datetime(dt_str: Optional[str]) -> Optional[datetime]:
    return parse_iso_datetime(dt_str)


def _format_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: Optional[str]) -> Optional[date]:
    return parse_iso_date(value)


def create_schema(engine: Engine) -> None:
    """Create missing tables and indexes. Safe to call repeatedly."""
    try:
        Base.metadata.create_all(engine, checkfirst=True)
    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise

    tables = inspect(engine).get_table_names()
    logger.info(
        "Database schema ready",
        extra={"event": "database.schema.ready", "tables": sorted(tables)},
    )
