"""Batch execution: load candidates, match, deliver, record.

Each tick of a scheduled job runs one batch. Destinations are processed
sequentially; a failure for one destination is logged, collected in the
report and never stops the rest of the batch.
"""

from typing import Callable, ContextManager, FrozenSet, Iterable, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from ..delivery.base import DeliveryChannel
from ..delivery.models import DeliveryKind, DeliveryRequest
from ..domain.models import ContentItem, GuildConfiguration, Recipient
from ..lifecycle.manager import LifecycleManager
from ..logging import get_logger
from ..logging.context import log_context
from ..matching.engine import MatchEngine, build_broadcast_results
from ..matching.models import tag_entry_keywords
from ..persistence import (
    ContentRepository,
    GuildRepository,
    PersistenceError,
    RecipientRepository,
    get_session,
)
from ..utils.timestamps import ensure_utc, utc_now
from .models import BatchReport

logger = get_logger(__name__, component="dispatcher")

SessionScope = Callable[[], ContextManager[Session]]


class Dispatcher:
    """Runs digest and broadcast batches against a delivery channel."""

    def __init__(
        self,
        channel: DeliveryChannel,
        matcher: Optional[MatchEngine] = None,
        lifecycle: Optional[LifecycleManager] = None,
        session_scope: SessionScope = get_session,
    ):
        self.channel = channel
        self.matcher = matcher or MatchEngine()
        self.lifecycle = lifecycle or LifecycleManager(session_scope=session_scope)
        self.session_scope = session_scope

    def run_batch(
        self,
        recipients: Iterable[Recipient],
        items: Sequence[ContentItem],
        now=None,
    ) -> BatchReport:
        """Deliver personal digests to recipients with matching, eligible entries.

        Steps per recipient: eligible entries, one match call over their
        keywords, one delivery with every matched item, then lifecycle
        bookkeeping for the entries that contributed. Recipients without
        eligible entries or matches are skipped silently.
        """
        now = ensure_utc(now) if now else utc_now()
        report = BatchReport(kind=DeliveryKind.DIGEST, started_at=now, run_id=uuid4().hex)

        with log_context(run_id=report.run_id, batch=DeliveryKind.DIGEST.value):
            for recipient in recipients:
                report.considered += 1
                with log_context(recipient_id=recipient.recipient_id):
                    self._deliver_digest(recipient, items, now, report)

            return self._finish(report)

    def _deliver_digest(
        self,
        recipient: Recipient,
        items: Sequence[ContentItem],
        now,
        report: BatchReport,
    ) -> None:
        try:
            eligible = self.lifecycle.eligible_entries(recipient.entries, now)
            if not eligible:
                report.skipped += 1
                logger.debug(
                    "No eligible entries",
                    extra={"event": "dispatch.recipient.skipped", "reason": "no_eligible_entries"},
                )
                return

            matches = self.matcher.match(tag_entry_keywords(eligible), items)
            if not matches:
                report.skipped += 1
                logger.debug(
                    "No matching items",
                    extra={"event": "dispatch.recipient.skipped", "reason": "no_matches"},
                )
                return

            self.channel.send(
                DeliveryRequest(
                    destination=recipient.recipient_id,
                    kind=DeliveryKind.DIGEST,
                    matches=matches,
                    locale=recipient.locale,
                    timezone=recipient.timezone,
                )
            )
        except Exception as e:
            report.add_failure(recipient.recipient_id, e)
            logger.error(
                f"Delivery to recipient failed: {e}",
                extra={"event": "dispatch.recipient.failed", "error_type": type(e).__name__},
                exc_info=True,
            )
            return

        report.success_count += 1
        report.matched_items += len(matches)

        contributing_ids = set()
        for match in matches:
            contributing_ids.update(match.entry_ids)
        contributing = [entry for entry in eligible if entry.id in contributing_ids]

        try:
            report.entries_recorded += self.lifecycle.record_delivery(contributing, now)
        except PersistenceError as e:
            # The message is out; counters catch up on the next successful write.
            report.bookkeeping_errors += 1
            logger.error(
                f"Failed to record delivery: {e}",
                extra={
                    "event": "dispatch.bookkeeping.failed",
                    "entry_ids": sorted(contributing_ids),
                },
                exc_info=True,
            )
            return

        logger.info(
            "Digest delivered",
            extra={
                "event": "dispatch.recipient.delivered",
                "item_count": len(matches),
                "entry_ids": sorted(contributing_ids),
            },
        )

    def run_broadcast_batch(
        self,
        guilds: Iterable[GuildConfiguration],
        items: Sequence[ContentItem],
        now=None,
    ) -> BatchReport:
        """Deliver every candidate item to each guild's notification channel.

        Guilds with notifications disabled or without a channel are skipped.
        Broadcasts carry no quota or cooldown, so nothing is recorded.
        """
        now = ensure_utc(now) if now else utc_now()
        report = BatchReport(kind=DeliveryKind.BROADCAST, started_at=now, run_id=uuid4().hex)
        matches = build_broadcast_results(items)

        with log_context(run_id=report.run_id, batch=DeliveryKind.BROADCAST.value):
            for guild in guilds:
                report.considered += 1
                with log_context(guild_id=guild.guild_id):
                    if not guild.can_receive:
                        report.skipped += 1
                        logger.warning(
                            "Guild cannot receive broadcasts, skipping",
                            extra={
                                "event": "dispatch.guild.skipped",
                                "reason": "disabled"
                                if guild.notifications_disabled
                                else "no_channel",
                            },
                        )
                        continue

                    if not matches:
                        report.skipped += 1
                        continue

                    try:
                        self.channel.send(
                            DeliveryRequest(
                                destination=guild.channel_id,
                                kind=DeliveryKind.BROADCAST,
                                matches=matches,
                                locale=guild.locale,
                                timezone=guild.timezone,
                                guild_id=guild.guild_id,
                            )
                        )
                    except Exception as e:
                        report.add_failure(guild.guild_id, e)
                        logger.error(
                            f"Broadcast to guild failed: {e}",
                            extra={"event": "dispatch.guild.failed", "error_type": type(e).__name__},
                            exc_info=True,
                        )
                        continue

                    report.success_count += 1
                    report.matched_items += len(matches)

            return self._finish(report)

    def run_digest_job(self, members: Optional[FrozenSet[str]] = None) -> Optional[BatchReport]:
        """Job body of the personal digest.

        Returns None when there is nobody or nothing to deliver.

        Raises:
            PersistenceError: If loading recipients or items fails; the run is
                abandoned and the next tick starts over
        """
        now = utc_now()
        with self.session_scope() as session:
            recipients = RecipientRepository(session).list_with_entries()
            if not recipients:
                logger.info(
                    "No recipients with entries, skipping",
                    extra={"event": "dispatch.job.skipped", "reason": "no_recipients"},
                )
                return None
            items = ContentRepository(session).list_candidate_items(now)

        if not items:
            logger.info(
                "No upcoming screenings, skipping",
                extra={"event": "dispatch.job.skipped", "reason": "no_items"},
            )
            return None

        return self.run_batch(recipients, items, now)

    def run_broadcast_job(self, members: FrozenSet[str]) -> Optional[BatchReport]:
        """Job body of a guild broadcast group.

        Members without a stored configuration are skipped with a warning.

        Raises:
            PersistenceError: If loading guilds or items fails
        """
        now = utc_now()
        with self.session_scope() as session:
            guilds: List[GuildConfiguration] = GuildRepository(session).list_by_ids(members)
            items = ContentRepository(session).list_candidate_items(now)

        missing = sorted(set(members) - {guild.guild_id for guild in guilds})
        if missing:
            logger.warning(
                "No configuration found for guilds, skipping them",
                extra={"event": "dispatch.guild.missing_config", "guild_ids": missing},
            )

        if not items:
            logger.info(
                "No upcoming screenings, skipping",
                extra={"event": "dispatch.job.skipped", "reason": "no_items"},
            )
            return None

        report = self.run_broadcast_batch(guilds, items, now)
        report.considered += len(missing)
        report.skipped += len(missing)
        return report

    @staticmethod
    def _finish(report: BatchReport) -> BatchReport:
        report.finished_at = utc_now()
        logger.info(
            "Batch finished",
            extra={
                "event": "dispatch.batch.finished",
                "duration_ms": int(report.duration_seconds * 1000),
                "considered": report.considered,
                "skipped": report.skipped,
                "success_count": report.success_count,
                "failure_count": report.failure_count,
                "matched_items": report.matched_items,
                "entries_recorded": report.entries_recorded,
                "had_errors": report.had_errors,
            },
        )
        return report
