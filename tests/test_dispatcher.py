"""Unit tests for the dispatcher: digest and broadcast batches and job bodies."""

import logging
from datetime import timedelta
from unittest.mock import Mock, patch

import pytest

from showtime_notifier.delivery import DeliveryKind, TransientDeliveryError
from showtime_notifier.dispatch import BatchReport, Dispatcher
from showtime_notifier.lifecycle import LifecycleManager
from showtime_notifier.persistence import (
    ContentRepository,
    GuildRepository,
    NotificationEntryRepository,
    PersistenceError,
    RecipientRepository,
    get_session,
)
from showtime_notifier.utils.timestamps import utc_now
from tests.helpers.factories import (
    NOW,
    RecordingChannel,
    make_entry,
    make_guild,
    make_item,
    make_recipient,
    make_screening,
)


@pytest.fixture
def items():
    return [
        make_item("dune-2", "Dune: Part Two", make_screening(24, "IMAX", ["imax"])),
        make_item("barbie", "Barbie", make_screening(30, "Saal 4", ["3d"])),
    ]


def seed_recipient(recipient_id, *entries, locale=None):
    with get_session() as session:
        RecipientRepository(session).upsert(recipient_id, locale=locale, now=NOW)
        entry_repo = NotificationEntryRepository(session)
        for entry in entries:
            entry_repo.add(entry.model_copy(update={"id": None}), NOW)
        return RecipientRepository(session).get(recipient_id)


def load_entry(recipient_id, name):
    with get_session() as session:
        return NotificationEntryRepository(session).get_by_name(recipient_id, name)


def lenient_lifecycle():
    lifecycle = Mock(spec=LifecycleManager)
    lifecycle.eligible_entries.side_effect = lambda entries, now: list(entries)
    lifecycle.record_delivery.side_effect = lambda entries, now: len(list(entries))
    return lifecycle


# ============================================================================
# Digest batches
# ============================================================================


class TestRunBatch:
    def test_delivers_and_records_quota(self, memory_db, items):
        recipient = seed_recipient(
            "1234", make_entry("dune", titles=["Dune"], max_deliveries=1)
        )
        channel = RecordingChannel()
        dispatcher = Dispatcher(channel)

        report = dispatcher.run_batch([recipient], items, NOW)

        assert report.kind == DeliveryKind.DIGEST
        assert report.considered == 1
        assert report.success_count == 1
        assert report.matched_items == 1
        assert report.entries_recorded == 1
        assert not report.had_errors
        assert report.run_id
        assert report.finished_at is not None

        request = channel.requests[0]
        assert request.destination == "1234"
        assert request.kind == DeliveryKind.DIGEST
        assert [m.item.item_id for m in request.matches] == ["dune-2"]

        stored = load_entry("1234", "dune")
        assert stored.deliveries_sent == 1
        assert stored.last_delivered_at == NOW

    def test_exhausted_quota_skips_next_batch(self, memory_db, items):
        seed_recipient("1234", make_entry("dune", titles=["Dune"], max_deliveries=1))
        channel = RecordingChannel()
        dispatcher = Dispatcher(channel)

        with get_session() as session:
            first = RecipientRepository(session).get("1234")
        dispatcher.run_batch([first], items, NOW)

        with get_session() as session:
            reloaded = RecipientRepository(session).get("1234")
        report = dispatcher.run_batch([reloaded], items, NOW + timedelta(days=2))

        assert report.skipped == 1
        assert report.success_count == 0
        assert len(channel.requests) == 1

    def test_repeated_batch_with_same_recipients_respects_quota(self, memory_db, items):
        recipient = seed_recipient(
            "1234", make_entry("dune", titles=["Dune"], max_deliveries=1, cooldown_days=0)
        )
        channel = RecordingChannel()
        dispatcher = Dispatcher(channel)

        first = dispatcher.run_batch([recipient], items, NOW)
        second = dispatcher.run_batch([recipient], items, NOW)

        assert first.success_count == 1
        assert second.skipped == 1
        assert second.success_count == 0
        assert len(channel.requests) == 1
        assert recipient.entries[0].deliveries_sent == 1
        assert load_entry("1234", "dune").deliveries_sent == 1

    def test_cooldown_skips_recipient(self, memory_db, items):
        seed_recipient("1234", make_entry("dune", titles=["Dune"], cooldown_days=1))
        channel = RecordingChannel()
        dispatcher = Dispatcher(channel)

        with get_session() as session:
            dispatcher.run_batch([RecipientRepository(session).get("1234")], items, NOW)
        with get_session() as session:
            recipient = RecipientRepository(session).get("1234")

        later = dispatcher.run_batch([recipient], items, NOW + timedelta(hours=12))
        next_day = dispatcher.run_batch([recipient], items, NOW + timedelta(days=1))

        assert later.skipped == 1
        assert next_day.success_count == 1
        assert load_entry("1234", "dune").deliveries_sent is None

    def test_only_contributing_entries_are_recorded(self, items):
        lifecycle = lenient_lifecycle()
        dune = make_entry("dune", titles=["Dune"], entry_id=1)
        oppenheimer = make_entry("oppie", titles=["Oppenheimer"], entry_id=2)
        dispatcher = Dispatcher(RecordingChannel(), lifecycle=lifecycle)

        dispatcher.run_batch([make_recipient("1234", dune, oppenheimer)], items, NOW)

        recorded, _ = lifecycle.record_delivery.call_args.args
        assert [entry.id for entry in recorded] == [1]

    def test_one_delivery_for_several_matching_entries(self, items):
        lifecycle = lenient_lifecycle()
        channel = RecordingChannel()
        recipient = make_recipient(
            "1234",
            make_entry("dune", titles=["Dune"], entry_id=1),
            make_entry("3d", titles=(), features=["3D"], entry_id=2),
        )

        report = Dispatcher(channel, lifecycle=lifecycle).run_batch([recipient], items, NOW)

        assert len(channel.requests) == 1
        assert report.matched_items == 2
        assert report.entries_recorded == 2

    def test_no_eligible_entries_is_skipped(self, items):
        channel = RecordingChannel()
        recipient = make_recipient("1234", make_entry(max_deliveries=0))

        report = Dispatcher(channel, lifecycle=LifecycleManager()).run_batch(
            [recipient], items, NOW
        )

        assert report.skipped == 1
        assert channel.requests == []

    def test_no_matches_is_skipped(self, items):
        channel = RecordingChannel()
        lifecycle = lenient_lifecycle()
        recipient = make_recipient("1234", make_entry("x", titles=["Oppenheimer"]))

        report = Dispatcher(channel, lifecycle=lifecycle).run_batch([recipient], items, NOW)

        assert report.skipped == 1
        assert channel.requests == []
        lifecycle.record_delivery.assert_not_called()

    def test_failure_is_isolated_per_recipient(self, items, caplog):
        lifecycle = lenient_lifecycle()
        channel = RecordingChannel(
            fail_for={"2"}, error=TransientDeliveryError("relay down", destination="2")
        )
        recipients = [
            make_recipient(rid, make_entry(recipient_id=rid, entry_id=int(rid)))
            for rid in ("1", "2", "3")
        ]

        with caplog.at_level(logging.ERROR):
            report = Dispatcher(channel, lifecycle=lifecycle).run_batch(recipients, items, NOW)

        assert channel.destinations == ["1", "3"]
        assert report.success_count == 2
        assert report.failure_count == 1
        assert report.failures[0].destination == "2"
        assert report.failures[0].error_type == "TransientDeliveryError"
        assert report.had_errors
        assert lifecycle.record_delivery.call_count == 2
        assert any("Delivery to recipient failed" in r.getMessage() for r in caplog.records)

    def test_bookkeeping_failure_does_not_count_as_delivery_failure(self, items):
        lifecycle = lenient_lifecycle()
        lifecycle.record_delivery.side_effect = PersistenceError("database is locked")
        channel = RecordingChannel()

        report = Dispatcher(channel, lifecycle=lifecycle).run_batch(
            [make_recipient("1234", make_entry())], items, NOW
        )

        assert report.success_count == 1
        assert report.failure_count == 0
        assert report.bookkeeping_errors == 1
        assert report.entries_recorded == 0
        assert report.had_errors

    def test_recipient_preferences_are_passed_to_channel(self, items):
        channel = RecordingChannel()
        recipient = make_recipient(
            "1234", make_entry(), locale="de", timezone="America/New_York"
        )

        Dispatcher(channel, lifecycle=lenient_lifecycle()).run_batch([recipient], items, NOW)

        assert channel.requests[0].locale == "de"
        assert channel.requests[0].timezone == "America/New_York"

    def test_empty_batch(self, items):
        report = Dispatcher(RecordingChannel()).run_batch([], items, NOW)
        assert report.considered == 0
        assert not report.had_errors


# ============================================================================
# Broadcast batches
# ============================================================================


class TestRunBroadcastBatch:
    def test_broadcasts_every_item(self, items):
        channel = RecordingChannel()

        report = Dispatcher(channel).run_broadcast_batch([make_guild(locale="de")], items, NOW)

        request = channel.requests[0]
        assert request.kind == DeliveryKind.BROADCAST
        assert request.destination == "c-4321"
        assert request.guild_id == "4321"
        assert request.locale == "de"
        assert [m.item.item_id for m in request.matches] == ["dune-2", "barbie"]
        assert report.kind == DeliveryKind.BROADCAST
        assert report.success_count == 1
        assert report.matched_items == 2

    def test_skips_guilds_that_cannot_receive(self, items, caplog):
        channel = RecordingChannel()
        guilds = [
            make_guild("1", "c-1", notifications_disabled=True),
            make_guild("2", None),
            make_guild("3", "c-3"),
        ]

        with caplog.at_level(logging.WARNING):
            report = Dispatcher(channel).run_broadcast_batch(guilds, items, NOW)

        assert channel.destinations == ["c-3"]
        assert report.considered == 3
        assert report.skipped == 2
        reasons = [
            getattr(r, "reason", None)
            for r in caplog.records
            if getattr(r, "event", None) == "dispatch.guild.skipped"
        ]
        assert reasons == ["disabled", "no_channel"]

    def test_failure_is_isolated_per_guild(self, items):
        channel = RecordingChannel(fail_for={"c-1"})
        guilds = [make_guild("1", "c-1"), make_guild("2", "c-2")]

        report = Dispatcher(channel).run_broadcast_batch(guilds, items, NOW)

        assert channel.destinations == ["c-2"]
        assert report.failures[0].destination == "1"
        assert report.failures[0].error_type == "RuntimeError"
        assert report.success_count == 1

    def test_items_without_screenings_are_not_broadcast(self):
        channel = RecordingChannel()
        empty = make_item("ghost", "Ghost", make_screening()).with_screenings([])

        report = Dispatcher(channel).run_broadcast_batch([make_guild()], [empty], NOW)

        assert report.skipped == 1
        assert channel.requests == []

    def test_broadcast_records_nothing(self, items):
        lifecycle = lenient_lifecycle()
        Dispatcher(RecordingChannel(), lifecycle=lifecycle).run_broadcast_batch(
            [make_guild()], items, NOW
        )
        lifecycle.record_delivery.assert_not_called()


# ============================================================================
# Job bodies
# ============================================================================


def seed_items(*items):
    with get_session() as session:
        repo = ContentRepository(session)
        for item in items:
            repo.upsert_item(item, utc_now())


def future_item(item_id, title, hours=24):
    return make_item(item_id, title, make_screening(hours, now=utc_now()))


class TestJobs:
    def test_digest_job_delivers_from_store(self, memory_db):
        seed_recipient("1234", make_entry("dune", titles=["Dune"]))
        seed_recipient("5678", make_entry("oppie", titles=["Oppenheimer"], recipient_id="5678"))
        seed_items(future_item("dune-2", "Dune: Part Two"), future_item("barbie", "Barbie"))
        channel = RecordingChannel()

        report = Dispatcher(channel).run_digest_job()

        assert isinstance(report, BatchReport)
        assert report.considered == 2
        assert report.skipped == 1
        assert channel.destinations == ["1234"]
        assert load_entry("1234", "dune").last_delivered_at is not None

    def test_digest_job_without_recipients(self, memory_db):
        seed_items(future_item("dune-2", "Dune: Part Two"))
        assert Dispatcher(RecordingChannel()).run_digest_job() is None

    def test_digest_job_ignores_past_screenings(self, memory_db):
        seed_recipient("1234", make_entry())
        seed_items(future_item("dune-2", "Dune: Part Two", hours=-2))
        channel = RecordingChannel()

        assert Dispatcher(channel).run_digest_job() is None
        assert channel.requests == []

    def test_digest_job_propagates_load_errors(self, memory_db):
        with patch(
            "showtime_notifier.dispatch.dispatcher.RecipientRepository.list_with_entries",
            side_effect=PersistenceError("no such table"),
        ):
            with pytest.raises(PersistenceError):
                Dispatcher(RecordingChannel()).run_digest_job()

    def test_broadcast_job_loads_members(self, memory_db, caplog):
        with get_session() as session:
            repo = GuildRepository(session)
            repo.upsert(make_guild("1", "c-1"))
            repo.upsert(make_guild("2", "c-2"))
        seed_items(future_item("dune-2", "Dune: Part Two"))
        channel = RecordingChannel()

        with caplog.at_level(logging.WARNING):
            report = Dispatcher(channel).run_broadcast_job(frozenset({"1", "9"}))

        assert channel.destinations == ["c-1"]
        assert report.considered == 2
        assert report.skipped == 1
        assert any(
            getattr(r, "event", None) == "dispatch.guild.missing_config" for r in caplog.records
        )

    def test_broadcast_job_without_items(self, memory_db):
        with get_session() as session:
            GuildRepository(session).upsert(make_guild())
        channel = RecordingChannel()

        assert Dispatcher(channel).run_broadcast_job(frozenset({"4321"})) is None
        assert channel.requests == []
