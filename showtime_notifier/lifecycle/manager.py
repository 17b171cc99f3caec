"""Delivery lifecycle of notification entries.

An entry fires only while it is eligible: quota left, not deactivated, not
expired and out of cooldown. Entries that can never fire again (expired or
quota exhausted) are retired by the cleanup job: deleted outright, or
deactivated when the owner asked to keep them.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, ContextManager, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..domain.models import DEFAULT_TIMEZONE, NotificationEntry
from ..exceptions import NotDeactivatedError, NotFoundError
from ..logging import get_logger
from ..logging.context import log_context
from ..persistence import NotificationEntryRepository, RecipientRepository, get_session
from ..utils.timestamps import ensure_utc, utc_now
from .validators import validate_expiration_date

logger = get_logger(__name__, component="lifecycle")

SessionScope = Callable[[], ContextManager[Session]]


@dataclass
class CleanupResult:
    """Outcome of one cleanup run."""

    started_at: datetime
    deleted: int = 0
    deactivated: int = 0
    finished_at: Optional[datetime] = field(default=None)

    @property
    def changed(self) -> int:
        return self.deleted + self.deactivated


def _today_utc(now: datetime) -> date:
    return ensure_utc(now).date()


class LifecycleManager:
    """Eligibility checks and lifecycle bookkeeping backed by the store."""

    def __init__(self, session_scope: SessionScope = get_session):
        self.session_scope = session_scope

    @staticmethod
    def quota_exhausted(entry: NotificationEntry) -> bool:
        if entry.max_deliveries is None:
            return False
        return (entry.deliveries_sent or 0) >= entry.max_deliveries

    @staticmethod
    def is_expired(entry: NotificationEntry, now: datetime) -> bool:
        """Expired once the UTC calendar date reaches ``expires_at``."""
        if entry.expires_at is None:
            return False
        return entry.expires_at <= _today_utc(now)

    @staticmethod
    def cooldown_elapsed(entry: NotificationEntry, now: datetime) -> bool:
        if entry.last_delivered_at is None:
            return True
        return ensure_utc(now) - entry.last_delivered_at >= timedelta(days=entry.cooldown_days)

    def is_eligible(self, entry: NotificationEntry, now: datetime) -> bool:
        """Whether the entry may be delivered at ``now``."""
        if entry.is_deactivated:
            return False
        if self.quota_exhausted(entry):
            return False
        if self.is_expired(entry, now):
            return False
        return self.cooldown_elapsed(entry, now)

    def is_retired(self, entry: NotificationEntry, now: datetime) -> bool:
        """Whether the entry can never become eligible again without reactivation."""
        return self.is_expired(entry, now) or self.quota_exhausted(entry)

    def eligible_entries(
        self, entries: Iterable[NotificationEntry], now: datetime
    ) -> List[NotificationEntry]:
        return [entry for entry in entries if self.is_eligible(entry, now)]

    def record_delivery(
        self, entries: Iterable[NotificationEntry], now: Optional[datetime] = None
    ) -> int:
        """Record one successful delivery for each entry.

        Uses a single UPDATE so the counter increment is atomic in the store.
        Once the store accepted it, the given entries are updated in place
        so callers holding them see the new counters without reloading.

        Returns:
            Number of entries updated

        Raises:
            PersistenceError: If the store rejects the update
        """
        now = ensure_utc(now) if now else utc_now()
        recorded = [entry for entry in entries if entry.id is not None]
        entry_ids = [entry.id for entry in recorded]
        if not entry_ids:
            return 0

        with self.session_scope() as session:
            updated = NotificationEntryRepository(session).record_delivery(entry_ids, now)

        for entry in recorded:
            if entry.quota_tracked and (entry.deliveries_sent or 0) < entry.max_deliveries:
                entry.deliveries_sent = (entry.deliveries_sent or 0) + 1
            entry.last_delivered_at = now

        logger.debug(
            "Deliveries recorded",
            extra={
                "event": "lifecycle.delivery.recorded",
                "entry_ids": entry_ids,
                "updated": updated,
            },
        )
        return updated

    def run_cleanup(self, now: Optional[datetime] = None) -> CleanupResult:
        """Delete or deactivate every retired entry.

        Idempotent: deleted rows are gone and deactivated rows are skipped on
        the next run, so a second run without new deliveries changes nothing.
        """
        now = ensure_utc(now) if now else utc_now()
        today = _today_utc(now)
        result = CleanupResult(started_at=now)

        with log_context(job="cleanup"):
            logger.info(
                "Cleaning up retired notification entries",
                extra={"event": "lifecycle.cleanup.started", "today": today.isoformat()},
            )

            with self.session_scope() as session:
                repo = NotificationEntryRepository(session)
                result.deleted = repo.delete_retired(today)
                result.deactivated = repo.deactivate_retired(today, now)

            result.finished_at = utc_now()
            logger.info(
                "Cleanup finished",
                extra={
                    "event": "lifecycle.cleanup.finished",
                    "deleted": result.deleted,
                    "deactivated": result.deactivated,
                },
            )

        return result

    def reactivate(
        self,
        recipient_id: str,
        entry_name: str,
        new_expires_at=None,
        now: Optional[datetime] = None,
    ) -> NotificationEntry:
        """Bring a deactivated entry back into service.

        The delivery counter and cooldown start over. ``expires_at`` is
        replaced by ``new_expires_at``; when none is given the entry no
        longer expires. The new date is checked against today in the
        owner's timezone.

        Raises:
            NotFoundError: If the entry does not exist
            NotDeactivatedError: If the entry is active (it is left unchanged)
            InvalidDateError: If ``new_expires_at`` is malformed or in the past
        """
        with self.session_scope() as session:
            repo = NotificationEntryRepository(session)
            entry = repo.get_by_name(recipient_id, entry_name)
            if entry is None:
                raise NotFoundError(
                    f"Recipient {recipient_id} has no entry named {entry_name!r}"
                )
            if not entry.is_deactivated:
                raise NotDeactivatedError(recipient_id, entry_name)

            if new_expires_at is not None:
                owner = RecipientRepository(session).get(recipient_id)
                timezone = owner.timezone if owner else DEFAULT_TIMEZONE
                new_expires_at = validate_expiration_date(new_expires_at, timezone, now)

            reactivated = repo.reactivate(recipient_id, entry_name, new_expires_at)

        logger.info(
            "Entry reactivated",
            extra={
                "event": "lifecycle.entry.reactivated",
                "recipient_id": recipient_id,
                "entry_name": entry_name,
                "expires_at": new_expires_at,
            },
        )
        return reactivated
