"""Repositories over the configuration store and the content source.

Repositories take an open session (see ``get_session``), return domain
models and translate SQLAlchemy failures into PersistenceError subclasses.
"""

import json
import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import and_, case, delete, func, null, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from showtime_notifier.domain.models import (
    ContentItem,
    GuildConfiguration,
    NotificationEntry,
    Recipient,
)
from showtime_notifier.utils.timestamps import utc_now

from .exceptions import DataIntegrityError, PersistenceError, RecordNotFoundError
from .schema import (
    ContentItemModel,
    GuildConfigurationModel,
    NotificationEntryModel,
    RecipientModel,
    ScreeningModel,
    _format_date,
    _format_datetime,
)

logger = logging.getLogger(__name__)


def _retired_clause(today: date):
    """SQL condition for entries that expired or used up their quota."""
    return or_(
        and_(
            NotificationEntryModel.expires_at.isnot(None),
            NotificationEntryModel.expires_at <= _format_date(today),
        ),
        and_(
            NotificationEntryModel.max_deliveries.isnot(None),
            func.coalesce(NotificationEntryModel.deliveries_sent, 0)
            >= NotificationEntryModel.max_deliveries,
        ),
    )


class RecipientRepository:
    """Recipients and their preferences."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, recipient_id: str) -> Optional[Recipient]:
        """Recipient with all of its entries, or None."""
        try:
            model = self.session.get(RecipientModel, recipient_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving recipient {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve recipient: {e}") from e

    def upsert(
        self,
        recipient_id: str,
        timezone: Optional[str] = None,
        locale: Optional[str] = None,
        defaults: Optional[Recipient] = None,
        now: Optional[datetime] = None,
    ) -> Recipient:
        """Create the recipient or update the given preferences.

        Preferences passed as None are left untouched on existing rows and
        taken from ``defaults`` (or the model defaults) for new ones.
        """
        try:
            model = self.session.get(RecipientModel, recipient_id)
            if model is None:
                base = defaults or Recipient(recipient_id=recipient_id)
                model = RecipientModel(
                    recipient_id=recipient_id,
                    timezone=timezone or base.timezone,
                    locale=locale or base.locale,
                    created_at=_format_datetime(now or utc_now()),
                )
                self.session.add(model)
                logger.debug(f"Created recipient {recipient_id}")
            else:
                if timezone:
                    model.timezone = timezone
                if locale:
                    model.locale = locale

            self.session.flush()
            return model.to_domain()

        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to upsert recipient {recipient_id}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting recipient {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert recipient: {e}") from e

    def list_with_entries(self) -> List[Recipient]:
        """All recipients that own at least one entry, entries included."""
        try:
            stmt = (
                select(RecipientModel)
                .where(RecipientModel.entries.any())
                .options(
                    selectinload(RecipientModel.entries).selectinload(
                        NotificationEntryModel.keywords
                    )
                )
                .order_by(RecipientModel.recipient_id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing recipients: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list recipients: {e}") from e


class NotificationEntryRepository:
    """Notification entries and the lifecycle counters stored with them."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, entry: NotificationEntry, now: datetime) -> NotificationEntry:
        """Insert a new entry.

        Raises:
            DataIntegrityError: If the recipient already has an entry with this name
        """
        try:
            model = NotificationEntryModel.from_domain(entry, created_at=now)
            self.session.add(model)
            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(
                f"Entry {entry.name!r} already exists for recipient {entry.recipient_id}"
            ) from e
        except SQLAlchemyError as e:
            logger.error(f"Error adding entry {entry.name!r}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to add entry: {e}") from e

    def _get_model(self, recipient_id: str, name: str) -> Optional[NotificationEntryModel]:
        stmt = select(NotificationEntryModel).where(
            NotificationEntryModel.recipient_id == recipient_id,
            NotificationEntryModel.name == name,
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def get_by_name(self, recipient_id: str, name: str) -> Optional[NotificationEntry]:
        try:
            model = self._get_model(recipient_id, name)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving entry {name!r}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve entry: {e}") from e

    def list_for_recipient(self, recipient_id: str) -> List[NotificationEntry]:
        try:
            stmt = (
                select(NotificationEntryModel)
                .where(NotificationEntryModel.recipient_id == recipient_id)
                .order_by(NotificationEntryModel.id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing entries of {recipient_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list entries: {e}") from e

    def delete_by_name(self, recipient_id: str, name: str) -> bool:
        """Remove an entry; False when it did not exist."""
        try:
            model = self._get_model(recipient_id, name)
            if model is None:
                return False
            self.session.delete(model)
            self.session.flush()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error deleting entry {name!r}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete entry: {e}") from e

    def record_delivery(self, entry_ids: Iterable[int], delivered_at: datetime) -> int:
        """Bump the counters of the given entries in a single UPDATE.

        ``deliveries_sent`` only moves for quota-tracked entries and never
        past ``max_deliveries``; the increment happens inside the statement,
        so concurrent callers never lose an update.

        Returns:
            Number of rows updated
        """
        ids = sorted(set(entry_ids))
        if not ids:
            return 0

        sent = func.coalesce(NotificationEntryModel.deliveries_sent, 0)
        try:
            stmt = (
                update(NotificationEntryModel)
                .where(NotificationEntryModel.id.in_(ids))
                .values(
                    deliveries_sent=case(
                        (NotificationEntryModel.max_deliveries.is_(None), null()),
                        (sent < NotificationEntryModel.max_deliveries, sent + 1),
                        else_=sent,
                    ),
                    last_delivered_at=_format_datetime(delivered_at),
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error recording delivery for entries {ids}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to record delivery: {e}") from e

    def delete_retired(self, today: date) -> int:
        """Delete retired entries that are not kept after expiration."""
        try:
            stmt = (
                delete(NotificationEntryModel)
                .where(
                    NotificationEntryModel.keep_after_expiration.is_(False),
                    _retired_clause(today),
                )
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error deleting retired entries: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete retired entries: {e}") from e

    def deactivate_retired(self, today: date, deactivated_at: datetime) -> int:
        """Stamp ``deactivated_at`` on retired entries that are kept after expiration."""
        try:
            stmt = (
                update(NotificationEntryModel)
                .where(
                    NotificationEntryModel.keep_after_expiration.is_(True),
                    NotificationEntryModel.deactivated_at.is_(None),
                    _retired_clause(today),
                )
                .values(deactivated_at=_format_datetime(deactivated_at))
                .execution_options(synchronize_session=False)
            )
            result = self.session.execute(stmt)
            self.session.flush()
            return result.rowcount
        except SQLAlchemyError as e:
            logger.error(f"Error deactivating retired entries: {e}", exc_info=True)
            raise PersistenceError(f"Failed to deactivate retired entries: {e}") from e

    def reactivate(
        self, recipient_id: str, name: str, expires_at: Optional[date]
    ) -> NotificationEntry:
        """Reset the lifecycle state of a deactivated entry.

        Raises:
            RecordNotFoundError: If the entry does not exist
        """
        try:
            model = self._get_model(recipient_id, name)
            if model is None:
                raise RecordNotFoundError(f"Entry {name!r} of recipient {recipient_id} not found")

            model.deactivated_at = None
            model.last_delivered_at = None
            model.deliveries_sent = 0 if model.max_deliveries is not None else None
            model.expires_at = _format_date(expires_at)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error reactivating entry {name!r}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to reactivate entry: {e}") from e


class ContentRepository:
    """Content items and their screenings."""

    def __init__(self, session: Session):
        self.session = session

    def upsert_item(self, item: ContentItem, now: datetime) -> ContentItem:
        """Insert or replace an item; its screening list is replaced wholesale."""
        try:
            model = self.session.get(ContentItemModel, item.item_id)
            if model is None:
                model = ContentItemModel(item_id=item.item_id)
                self.session.add(model)

            model.title = item.title
            model.description = item.description
            model.age_rating = item.age_rating
            model.duration_minutes = item.duration_minutes
            model.genres = json.dumps(item.genres, ensure_ascii=False)
            model.updated_at = _format_datetime(now)
            model.screenings = [ScreeningModel.from_domain(s) for s in item.screenings]

            self.session.flush()
            return model.to_domain()
        except IntegrityError as e:
            raise DataIntegrityError(f"Failed to upsert item {item.item_id}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(f"Error upserting item {item.item_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert item: {e}") from e

    def list_candidate_items(self, now: datetime) -> List[ContentItem]:
        """Items with at least one screening starting at or after ``now``.

        Only those future screenings are attached to the returned items.
        """
        try:
            now_str = _format_datetime(now)
            stmt = (
                select(ScreeningModel)
                .where(ScreeningModel.start_time >= now_str)
                .order_by(ScreeningModel.item_id, ScreeningModel.start_time, ScreeningModel.id)
            )
            by_item: Dict[str, List[ScreeningModel]] = {}
            for screening in self.session.execute(stmt).scalars().all():
                by_item.setdefault(screening.item_id, []).append(screening)

            if not by_item:
                return []

            items_stmt = (
                select(ContentItemModel)
                .where(ContentItemModel.item_id.in_(list(by_item)))
                .order_by(ContentItemModel.title, ContentItemModel.item_id)
            )
            return [
                model.to_domain(screenings=by_item[model.item_id])
                for model in self.session.execute(items_stmt).scalars().all()
            ]
        except SQLAlchemyError as e:
            logger.error(f"Error loading candidate items: {e}", exc_info=True)
            raise PersistenceError(f"Failed to load candidate items: {e}") from e


class GuildRepository:
    """Guild broadcast configurations."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, guild_id: str) -> Optional[GuildConfiguration]:
        try:
            model = self.session.get(GuildConfigurationModel, guild_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Error retrieving guild {guild_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to retrieve guild: {e}") from e

    def upsert(self, config: GuildConfiguration) -> GuildConfiguration:
        try:
            model = self.session.get(GuildConfigurationModel, config.guild_id)
            if model is None:
                model = GuildConfigurationModel(guild_id=config.guild_id)
                self.session.add(model)
            model.apply(config)
            self.session.flush()
            return model.to_domain()
        except SQLAlchemyError as e:
            logger.error(f"Error upserting guild {config.guild_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to upsert guild: {e}") from e

    def delete(self, guild_id: str) -> bool:
        try:
            result = self.session.execute(
                delete(GuildConfigurationModel).where(GuildConfigurationModel.guild_id == guild_id)
            )
            self.session.flush()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting guild {guild_id}: {e}", exc_info=True)
            raise PersistenceError(f"Failed to delete guild: {e}") from e

    def list_by_ids(self, guild_ids: Iterable[str]) -> List[GuildConfiguration]:
        ids = sorted(set(guild_ids))
        if not ids:
            return []
        try:
            stmt = (
                select(GuildConfigurationModel)
                .where(GuildConfigurationModel.guild_id.in_(ids))
                .order_by(GuildConfigurationModel.guild_id)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"Error listing guilds: {e}", exc_info=True)
            raise PersistenceError(f"Failed to list guilds: {e}") from e

    def group_enabled_by_schedule(self, default_pattern: str) -> Dict[str, Set[str]]:
        """Guild ids with notifications enabled, grouped by effective cron pattern."""
        try:
            stmt = (
                select(GuildConfigurationModel.guild_id, GuildConfigurationModel.schedule)
                .where(GuildConfigurationModel.notifications_disabled.is_(False))
                .order_by(GuildConfigurationModel.guild_id)
            )
            groups: Dict[str, Set[str]] = {}
            for guild_id, schedule in self.session.execute(stmt).all():
                groups.setdefault(schedule or default_pattern, set()).add(guild_id)
            return groups
        except SQLAlchemyError as e:
            logger.error(f"Error grouping guild schedules: {e}", exc_info=True)
            raise PersistenceError(f"Failed to group guild schedules: {e}") from e
