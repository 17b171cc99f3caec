"""Configuration writes issued by the command layer.

Every operation validates its input before touching the store, so a
rejected call leaves recipients, entries, guilds and scheduled jobs as
they were.
"""

from datetime import datetime
from typing import Callable, ContextManager, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..config.models import SUPPORTED_LOCALES, DefaultsConfig, ScheduleConfig
from ..domain.models import (
    GuildConfiguration,
    Keyword,
    KeywordType,
    NotificationEntry,
    Recipient,
)
from ..exceptions import (
    DuplicateEntryError,
    EmptyKeywordsError,
    InvalidPreferenceError,
    InvalidScheduleError,
    NotFoundError,
    ValidationError,
)
from ..lifecycle import LifecycleManager, validate_expiration_date
from ..logging import get_logger
from ..persistence import (
    DataIntegrityError,
    GuildRepository,
    NotificationEntryRepository,
    RecipientRepository,
    get_session,
)
from ..scheduler import JobKind, ScheduleRegistry
from ..utils.timestamps import is_valid_timezone, utc_now

logger = get_logger(__name__, component="subscriptions")

SessionScope = Callable[[], ContextManager[Session]]


def _check_timezone(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not is_valid_timezone(value):
        raise InvalidPreferenceError(f"Unknown timezone: {value!r}")
    return value


def _check_locale(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if value not in SUPPORTED_LOCALES:
        raise InvalidPreferenceError(
            f"Unsupported locale {value!r}, expected one of {', '.join(SUPPORTED_LOCALES)}"
        )
    return value


def _build_keywords(titles: Iterable[str], features: Iterable[str]) -> List[Keyword]:
    keywords = []
    for kind, values in ((KeywordType.TITLE, titles), (KeywordType.FEATURE, features)):
        for value in values or ():
            if value and value.strip():
                keywords.append(Keyword(type=kind, value=value))
    return keywords


class SubscriptionService:
    """Recipients, their notification entries and guild broadcast settings."""

    def __init__(
        self,
        registry: ScheduleRegistry,
        schedules: Optional[ScheduleConfig] = None,
        defaults: Optional[DefaultsConfig] = None,
        lifecycle: Optional[LifecycleManager] = None,
        session_scope: SessionScope = get_session,
    ):
        self.registry = registry
        self.schedules = schedules or ScheduleConfig()
        self.defaults = defaults or DefaultsConfig()
        self.lifecycle = lifecycle or LifecycleManager(session_scope=session_scope)
        self.session_scope = session_scope

    def _default_recipient(self, recipient_id: str) -> Recipient:
        return Recipient(
            recipient_id=recipient_id,
            timezone=self.defaults.timezone,
            locale=self.defaults.locale,
        )

    def register_recipient(
        self,
        recipient_id: str,
        timezone: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> Recipient:
        """
        Create a recipient or update its preferences.

        Raises:
            InvalidPreferenceError: If the timezone or locale is unknown
        """
        timezone = _check_timezone(timezone)
        locale = _check_locale(locale)

        with self.session_scope() as session:
            recipient = RecipientRepository(session).upsert(
                recipient_id,
                timezone=timezone,
                locale=locale,
                defaults=self._default_recipient(recipient_id),
            )

        logger.info(
            "Recipient registered",
            extra={
                "event": "subscriptions.recipient.registered",
                "recipient_id": recipient_id,
                "timezone": recipient.timezone,
                "locale": recipient.locale,
            },
        )
        return recipient

    def add_entry(
        self,
        recipient_id: str,
        name: str,
        titles: Iterable[str] = (),
        features: Iterable[str] = (),
        max_deliveries: Optional[int] = None,
        cooldown_days: int = 1,
        expires_at=None,
        keep_after_expiration: bool = False,
        now: Optional[datetime] = None,
    ) -> NotificationEntry:
        """
        Save a new notification entry for a recipient.

        The recipient is created with default preferences if it does not
        exist yet. ``expires_at`` may be a ``YYYY-MM-DD`` string or a date and
        is checked against today in the recipient's timezone.

        Raises:
            EmptyKeywordsError: If neither titles nor features were given
            InvalidDateError: If ``expires_at`` is malformed or in the past
            DuplicateEntryError: If the recipient already has an entry with this name
            ValidationError: If a counter or the name is out of range
        """
        now = now or utc_now()
        keywords = _build_keywords(titles, features)
        if not keywords:
            raise EmptyKeywordsError(f"Entry {name!r} needs at least one title or feature keyword")
        if not name or not name.strip():
            raise ValidationError("Entry name cannot be empty")
        name = name.strip()
        if max_deliveries is not None and max_deliveries < 0:
            raise ValidationError("max_deliveries cannot be negative")
        if cooldown_days < 0:
            raise ValidationError("cooldown_days cannot be negative")

        with self.session_scope() as session:
            recipients = RecipientRepository(session)
            entries = NotificationEntryRepository(session)

            existing = recipients.get(recipient_id)
            timezone = existing.timezone if existing else self.defaults.timezone
            if expires_at is not None:
                expires_at = validate_expiration_date(expires_at, timezone, now)

            if entries.get_by_name(recipient_id, name) is not None:
                raise DuplicateEntryError(recipient_id, name)

            if existing is None:
                recipients.upsert(
                    recipient_id, defaults=self._default_recipient(recipient_id), now=now
                )

            entry = NotificationEntry(
                recipient_id=recipient_id,
                name=name,
                keywords=keywords,
                max_deliveries=max_deliveries,
                cooldown_days=cooldown_days,
                expires_at=expires_at,
                keep_after_expiration=keep_after_expiration,
            )
            try:
                saved = entries.add(entry, now)
            except DataIntegrityError as e:
                raise DuplicateEntryError(recipient_id, name) from e

        logger.info(
            "Notification entry added",
            extra={
                "event": "subscriptions.entry.added",
                "recipient_id": recipient_id,
                "entry_name": name,
                "keyword_count": len(keywords),
            },
        )
        return saved

    def remove_entry(self, recipient_id: str, name: str) -> None:
        """
        Raises:
            NotFoundError: If the recipient has no entry with this name
        """
        with self.session_scope() as session:
            removed = NotificationEntryRepository(session).delete_by_name(recipient_id, name)

        if not removed:
            raise NotFoundError(f"Recipient {recipient_id} has no entry named {name!r}")

        logger.info(
            "Notification entry removed",
            extra={
                "event": "subscriptions.entry.removed",
                "recipient_id": recipient_id,
                "entry_name": name,
            },
        )

    def list_entries(self, recipient_id: str) -> List[NotificationEntry]:
        """
        Raises:
            NotFoundError: If the recipient is unknown
        """
        with self.session_scope() as session:
            recipient = RecipientRepository(session).get(recipient_id)
        if recipient is None:
            raise NotFoundError(f"Unknown recipient {recipient_id}")
        return recipient.entries

    def reactivate_entry(
        self,
        recipient_id: str,
        name: str,
        expires_at=None,
        now: Optional[datetime] = None,
    ) -> NotificationEntry:
        return self.lifecycle.reactivate(recipient_id, name, expires_at, now=now)

    def configure_guild(
        self,
        guild_id: str,
        channel_id: Optional[str] = None,
        schedule: Optional[str] = None,
        enabled: Optional[bool] = None,
        timezone: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> GuildConfiguration:
        """
        Update a guild's broadcast settings and move it between jobs.

        Arguments left as None keep their stored value. An empty ``schedule``
        resets the guild to the default broadcast pattern.

        Raises:
            InvalidScheduleError: If ``schedule`` is not a valid cron pattern
            InvalidPreferenceError: If the timezone or locale is unknown
        """
        if schedule:
            self.registry.validate_pattern(schedule)
            schedule = " ".join(schedule.split())
        timezone = _check_timezone(timezone)
        locale = _check_locale(locale)
        default_pattern = self.schedules.guild_default

        with self.session_scope() as session:
            repo = GuildRepository(session)
            previous = repo.get(guild_id)
            current = previous or GuildConfiguration(
                guild_id=guild_id,
                timezone=self.defaults.timezone,
                locale=self.defaults.locale,
            )

            updates = {}
            if channel_id is not None:
                updates["channel_id"] = channel_id
            if schedule is not None:
                updates["schedule"] = schedule or None
            if enabled is not None:
                updates["notifications_disabled"] = not enabled
            if timezone is not None:
                updates["timezone"] = timezone
            if locale is not None:
                updates["locale"] = locale

            saved = repo.upsert(current.model_copy(update=updates))

        was_active = previous is not None and not previous.notifications_disabled
        is_active = not saved.notifications_disabled
        old_pattern = previous.effective_schedule(default_pattern) if previous else None
        new_pattern = saved.effective_schedule(default_pattern)

        if is_active and (not was_active or old_pattern != new_pattern):
            self.registry.move_member(
                guild_id, new_pattern, old_pattern if was_active else None
            )
        elif was_active and not is_active:
            self.registry.remove_member(guild_id, old_pattern)

        logger.info(
            "Guild configured",
            extra={
                "event": "subscriptions.guild.configured",
                "guild_id": guild_id,
                "schedule": new_pattern,
                "enabled": is_active,
            },
        )
        return saved

    def remove_guild(self, guild_id: str) -> None:
        """
        Delete a guild's configuration and drop it from its broadcast job.

        The job stops on its next tick once it has no members left.

        Raises:
            NotFoundError: If the guild has no stored configuration
        """
        with self.session_scope() as session:
            repo = GuildRepository(session)
            previous = repo.get(guild_id)
            if previous is None:
                raise NotFoundError(f"Unknown guild {guild_id}")
            repo.delete(guild_id)

        if not previous.notifications_disabled:
            self.registry.remove_member(
                guild_id, previous.effective_schedule(self.schedules.guild_default)
            )

        logger.info(
            "Guild removed",
            extra={"event": "subscriptions.guild.removed", "guild_id": guild_id},
        )

    def bootstrap_jobs(self) -> int:
        """
        Register every recurring job from the persisted state.

        Guilds sharing an effective pattern share one job. A persisted
        pattern that no longer parses is logged and skipped.

        Returns:
            Number of jobs created
        """
        with self.session_scope() as session:
            groups = GuildRepository(session).group_enabled_by_schedule(
                self.schedules.guild_default
            )

        created = 0
        for pattern, guild_ids in sorted(groups.items()):
            try:
                if self.registry.ensure_job(pattern, JobKind.GUILD_BROADCAST, guild_ids):
                    created += 1
            except InvalidScheduleError as e:
                logger.error(
                    f"Skipping guilds with invalid schedule: {e}",
                    extra={
                        "event": "subscriptions.bootstrap.invalid_schedule",
                        "pattern": pattern,
                        "guild_ids": sorted(guild_ids),
                    },
                )

        if self.registry.ensure_job(self.schedules.personal_digest, JobKind.PERSONAL_DIGEST):
            created += 1
        if self.registry.ensure_job(self.schedules.cleanup, JobKind.CLEANUP):
            created += 1

        logger.info(
            f"Bootstrapped {created} scheduled jobs",
            extra={
                "event": "subscriptions.bootstrap.finished",
                "jobs_created": created,
                "guild_groups": len(groups),
            },
        )
        return created
