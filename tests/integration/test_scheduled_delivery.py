"""Integration tests: configuration writes through scheduled ticks to delivery.

Runs against a file-backed SQLite database with the real registry,
dispatcher and lifecycle manager; only the delivery channel is replaced.
"""

from datetime import timedelta

import pytest

from showtime_notifier.config.models import ScheduleConfig
from showtime_notifier.dispatch import Dispatcher
from showtime_notifier.lifecycle import LifecycleManager
from showtime_notifier.persistence import (
    ContentRepository,
    NotificationEntryRepository,
    close_database,
    get_session,
    init_database,
)
from showtime_notifier.scheduler import JobKind, ScheduleRegistry
from showtime_notifier.subscriptions import SubscriptionService
from showtime_notifier.utils.timestamps import utc_now
from tests.helpers.factories import RecordingChannel, make_item, make_screening

MORNING = "0 9 * * *"
EVENING = "0 18 * * *"
DIGEST = "0 17 * * *"
CLEANUP = "30 3 * * *"


@pytest.fixture
def test_database(tmp_path):
    db_url = f"sqlite:///{tmp_path / 'integration.db'}"
    init_database(db_url)
    yield db_url
    close_database()


@pytest.fixture
def wiring(test_database):
    channel = RecordingChannel()
    lifecycle = LifecycleManager()
    dispatcher = Dispatcher(channel, lifecycle=lifecycle)
    registry = ScheduleRegistry()
    registry.register_handler(JobKind.GUILD_BROADCAST, dispatcher.run_broadcast_job)
    registry.register_handler(JobKind.PERSONAL_DIGEST, dispatcher.run_digest_job)
    registry.register_handler(JobKind.CLEANUP, lambda members: lifecycle.run_cleanup())
    service = SubscriptionService(
        registry=registry,
        schedules=ScheduleConfig(personal_digest=DIGEST, guild_default=MORNING, cleanup=CLEANUP),
        lifecycle=lifecycle,
    )
    yield service, registry, channel
    registry.shutdown(wait=False)


def seed_screenings():
    now = utc_now()
    with get_session() as session:
        repo = ContentRepository(session)
        repo.upsert_item(
            make_item("dune-2", "Dune: Part Two", make_screening(24, "IMAX", ["imax"], now=now)),
            now,
        )
        repo.upsert_item(
            make_item("barbie", "Barbie", make_screening(30, "Saal 4", ["3d"], now=now)), now
        )


class TestScheduledDigest:
    def test_quota_entry_is_delivered_once_then_cleaned_up(self, wiring):
        service, registry, channel = wiring
        seed_screenings()
        service.add_entry("1234", "dune", titles=["Dune"], max_deliveries=1)
        service.bootstrap_jobs()

        registry.trigger_now(DIGEST, JobKind.PERSONAL_DIGEST)
        registry.trigger_now(DIGEST, JobKind.PERSONAL_DIGEST)

        assert channel.destinations == ["1234"]
        with get_session() as session:
            entry = NotificationEntryRepository(session).get_by_name("1234", "dune")
        assert entry.deliveries_sent == 1
        assert entry.last_delivered_at is not None

        registry.trigger_now(CLEANUP, JobKind.CLEANUP)
        assert service.list_entries("1234") == []

    def test_kept_entry_is_deactivated_and_can_be_reactivated(self, wiring):
        service, registry, channel = wiring
        seed_screenings()
        service.add_entry(
            "1234", "3d", features=["3D"], max_deliveries=1, keep_after_expiration=True
        )
        service.bootstrap_jobs()

        registry.trigger_now(DIGEST, JobKind.PERSONAL_DIGEST)
        registry.trigger_now(CLEANUP, JobKind.CLEANUP)

        [entry] = service.list_entries("1234")
        assert entry.is_deactivated

        expires = (utc_now() + timedelta(days=30)).date().isoformat()
        reactivated = service.reactivate_entry("1234", "3d", expires)
        assert not reactivated.is_deactivated
        assert reactivated.deliveries_sent == 0

        registry.trigger_now(DIGEST, JobKind.PERSONAL_DIGEST)
        assert channel.destinations == ["1234", "1234"]
        assert [m.item.item_id for m in channel.requests[-1].matches] == ["barbie"]


class TestScheduledBroadcast:
    def test_guild_moves_between_jobs(self, wiring):
        service, registry, channel = wiring
        seed_screenings()
        service.configure_guild("1", channel_id="c-1")
        service.configure_guild("2", channel_id="c-2")

        registry.trigger_now(MORNING, JobKind.GUILD_BROADCAST)
        assert sorted(channel.destinations) == ["c-1", "c-2"]

        service.configure_guild("2", schedule=EVENING)
        registry.trigger_now(MORNING, JobKind.GUILD_BROADCAST)
        registry.trigger_now(EVENING, JobKind.GUILD_BROADCAST)

        assert channel.destinations[2:] == ["c-1", "c-2"]

    def test_job_stops_when_last_guild_leaves(self, wiring):
        service, registry, channel = wiring
        seed_screenings()
        service.configure_guild("1", channel_id="c-1", schedule=EVENING)

        service.configure_guild("1", enabled=False)
        registry.trigger_now(EVENING, JobKind.GUILD_BROADCAST)

        assert channel.requests == []
        assert registry.get_job(EVENING, JobKind.GUILD_BROADCAST) is None

        service.configure_guild("1", enabled=True)
        registry.trigger_now(EVENING, JobKind.GUILD_BROADCAST)
        assert channel.destinations == ["c-1"]
