#!/usr/bin/env python3
"""Sample digest harness for end-to-end validation.

Seeds a throwaway database with a few movies and notification entries, runs
one digest batch and one broadcast batch through the real matcher, renderer
and lifecycle bookkeeping, and prints the rendered messages instead of
posting them to a relay.

Usage:
    python scripts/run_sample_digest.py
    python scripts/run_sample_digest.py --database sqlite:////tmp/sample.db --locale de
"""

import argparse
import sys
from datetime import timedelta

from showtime_notifier.delivery import DeliveryChannel, DeliveryReceipt, TemplateRenderer
from showtime_notifier.dispatch import Dispatcher
from showtime_notifier.domain import ContentItem, GuildConfiguration, Screening
from showtime_notifier.logging.config import configure_logging
from showtime_notifier.persistence import (
    ContentRepository,
    GuildRepository,
    RecipientRepository,
    close_database,
    get_session,
    init_database,
)
from showtime_notifier.scheduler import ScheduleRegistry
from showtime_notifier.subscriptions import SubscriptionService
from showtime_notifier.utils.timestamps import utc_now


class ConsoleChannel(DeliveryChannel):
    """Prints rendered deliveries to stdout."""

    def __init__(self, renderer: TemplateRenderer):
        self.renderer = renderer

    def send(self, request):
        rendered = self.renderer.render(request, utc_now())
        print_header(f"{request.kind.value} -> {request.destination}")
        if rendered.thread_title:
            print(f"[thread] {rendered.thread_title}\n")
        for part in rendered.parts:
            print(part)
            print("-" * 40)
        return DeliveryReceipt(
            destination=request.destination,
            kind=request.kind,
            messages_sent=len(rendered.parts),
        )


def print_header(title: str):
    width = 80
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width + "\n")


def print_report(report):
    print_header(f"{report.kind.value} batch summary")
    rows = [
        ("Considered", report.considered),
        ("Skipped", report.skipped),
        ("Delivered", report.success_count),
        ("Failed", report.failure_count),
        ("Items delivered", report.matched_items),
        ("Entries recorded", report.entries_recorded),
        ("Had errors", "Yes" if report.had_errors else "No"),
    ]
    width = max(len(label) for label, _ in rows)
    for label, value in rows:
        print(f"  {label:<{width}}  {value}")


def seed(subscriptions: SubscriptionService, locale: str):
    now = utc_now()
    tomorrow = now + timedelta(days=1)
    items = [
        ContentItem(
            item_id="dune-2",
            title="Dune: Part Two",
            genres=["Sci-Fi", "Adventure"],
            duration_minutes=166,
            screenings=[
                Screening(start_time=tomorrow, auditorium="IMAX", features=["imax", "ov"]),
                Screening(start_time=tomorrow + timedelta(hours=3), auditorium="Saal 2"),
            ],
        ),
        ContentItem(
            item_id="past-lives",
            title="Past Lives",
            genres=["Drama"],
            screenings=[
                Screening(start_time=tomorrow, auditorium="Saal 5", features=["ov", "subtitled"])
            ],
        ),
    ]
    with get_session() as session:
        content = ContentRepository(session)
        for item in items:
            content.upsert_item(item, now)
        GuildRepository(session).upsert(
            GuildConfiguration(guild_id="guild-1", channel_id="channel-1", locale=locale)
        )

    subscriptions.register_recipient("user-1", locale=locale)
    subscriptions.add_entry("user-1", "dune", titles=["dune part two"], max_deliveries=1)
    subscriptions.add_entry("user-1", "ov", features=["ov"])


def main():
    parser = argparse.ArgumentParser(
        description="Run a sample digest and broadcast against seeded data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--database", default="sqlite:///:memory:", help="SQLAlchemy URL")
    parser.add_argument("--locale", default="en-US", choices=["en-US", "de"])
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    configure_logging(level=args.log_level)
    init_database(args.database)
    try:
        subscriptions = SubscriptionService(registry=ScheduleRegistry())
        seed(subscriptions, args.locale)

        dispatcher = Dispatcher(channel=ConsoleChannel(TemplateRenderer()))
        now = utc_now()
        with get_session() as session:
            recipients = RecipientRepository(session).list_with_entries()
            items = ContentRepository(session).list_candidate_items(now)
            guilds = GuildRepository(session).list_by_ids(["guild-1"])

        print_report(dispatcher.run_batch(recipients, items, now))
        print_report(dispatcher.run_broadcast_batch(guilds, items, now))
    finally:
        close_database()
    return 0


if __name__ == "__main__":
    sys.exit(main())
