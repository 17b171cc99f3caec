"""Main entry point for the Showtime Notifier service."""

import argparse
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from showtime_notifier.config.environment import EnvironmentConfig
from showtime_notifier.config.exceptions import ConfigurationError
from showtime_notifier.config.loader import load_config
from showtime_notifier.config.models import AppConfig
from showtime_notifier.delivery import TemplateRenderer, WebhookChannel
from showtime_notifier.dispatch import Dispatcher
from showtime_notifier.lifecycle import LifecycleManager
from showtime_notifier.logging import get_logger
from showtime_notifier.logging.config import configure_logging
from showtime_notifier.matching import MatchEngine
from showtime_notifier.persistence import GuildRepository, close_database, get_session, init_database
from showtime_notifier.scheduler import JobKind, ScheduleRegistry
from showtime_notifier.subscriptions import SubscriptionService

logger = get_logger(__name__, component="cli")

RUN_ONCE_CHOICES = ("digest", "broadcast", "cleanup")


@dataclass
class Application:
    """The wired components of one process."""

    registry: ScheduleRegistry
    dispatcher: Dispatcher
    lifecycle: LifecycleManager
    subscriptions: SubscriptionService
    channel: WebhookChannel


def load_runtime_config(
    config_path: Optional[Path], log_level_override: Optional[str]
) -> Tuple[AppConfig, EnvironmentConfig]:
    """
    Load configuration and resolve the effective log level.

    Priority for the log level: CLI > LOG_LEVEL environment variable > config file.

    Raises:
        ConfigurationError: If configuration is invalid
    """
    app_config, env_config = load_config(config_path)

    if log_level_override:
        env_config.log_level = log_level_override.upper()
    elif not env_config.log_level:
        env_config.log_level = app_config.logging.level

    return app_config, env_config


def build_application(app_config: AppConfig, env_config: EnvironmentConfig) -> Application:
    """Create the components and register a handler per job kind."""
    channel = WebhookChannel(
        url=env_config.webhook_url,
        token=env_config.webhook_token,
        timeout=app_config.delivery.request_timeout,
        user_agent=app_config.delivery.user_agent,
        renderer=TemplateRenderer(
            max_screenings_per_item=app_config.delivery.max_screenings_per_item
        ),
    )
    matcher = MatchEngine(
        title_threshold=app_config.matching.title_threshold,
        max_query_length=app_config.matching.max_query_length,
    )
    lifecycle = LifecycleManager()
    dispatcher = Dispatcher(channel=channel, matcher=matcher, lifecycle=lifecycle)
    registry = ScheduleRegistry()
    subscriptions = SubscriptionService(
        registry=registry,
        schedules=app_config.schedules,
        defaults=app_config.defaults,
        lifecycle=lifecycle,
    )

    registry.register_handler(JobKind.GUILD_BROADCAST, dispatcher.run_broadcast_job)
    registry.register_handler(JobKind.PERSONAL_DIGEST, dispatcher.run_digest_job)
    registry.register_handler(JobKind.CLEANUP, lambda members: lifecycle.run_cleanup())

    return Application(
        registry=registry,
        dispatcher=dispatcher,
        lifecycle=lifecycle,
        subscriptions=subscriptions,
        channel=channel,
    )


def run_once(app: Application, app_config: AppConfig, job: str) -> int:
    """
    Execute a single job synchronously.

    Returns:
        1 if the run reported delivery or bookkeeping errors, otherwise 0
    """
    logger.info(f"Executing single {job} run", extra={"event": "service.run_once.starting", "job": job})

    if job == "cleanup":
        result = app.lifecycle.run_cleanup()
        logger.info(
            f"Cleanup completed: {result.deleted} deleted, {result.deactivated} deactivated",
            extra={"event": "service.run_once.completed", "job": job, "changed": result.changed},
        )
        return 0

    if job == "digest":
        report = app.dispatcher.run_digest_job()
    else:
        with get_session() as session:
            groups = GuildRepository(session).group_enabled_by_schedule(
                app_config.schedules.guild_default
            )
        members = frozenset(guild_id for ids in groups.values() for guild_id in ids)
        report = app.dispatcher.run_broadcast_job(members) if members else None

    if report is None:
        logger.info("Nothing to deliver", extra={"event": "service.run_once.completed", "job": job})
        return 0

    logger.info(
        f"Run completed: {report.success_count} delivered, "
        f"{report.failure_count} failed, {report.skipped} skipped",
        extra={
            "event": "service.run_once.completed",
            "job": job,
            "duration_seconds": report.duration_seconds,
            "had_errors": report.had_errors,
        },
    )
    return 1 if report.had_errors else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Showtime Notifier - scheduled screening digests and guild broadcasts"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides config and environment)",
    )
    parser.add_argument(
        "--run-once",
        default=None,
        choices=RUN_ONCE_CHOICES,
        help="Run a single job immediately and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Showtime Notifier.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    load_dotenv()
    start_time = time.time()
    args = build_parser().parse_args(argv)

    try:
        app_config, env_config = load_runtime_config(args.config, args.log_level)

        configure_logging(
            level=env_config.log_level,
            format_type=app_config.logging.format,
            environment=app_config.logging.environment,
        )

        logger.info(
            "Showtime Notifier starting",
            extra={
                "event": "service.starting",
                "config_path": str(args.config) if args.config else None,
                "log_level": env_config.log_level,
                "run_once": args.run_once,
            },
        )

        init_database(env_config.database_url)
        app = build_application(app_config, env_config)

        if args.run_once:
            try:
                return run_once(app, app_config, args.run_once)
            finally:
                app.channel.close()
                close_database()
                logger.info(
                    "Showtime Notifier stopped",
                    extra={
                        "event": "service.stopping",
                        "uptime_seconds": round(time.time() - start_time, 2),
                    },
                )

        shutdown_event = threading.Event()
        app.subscriptions.bootstrap_jobs()

        def signal_handler(signum, frame):
            logger.info(
                f"Received signal {signum}, shutting down",
                extra={"event": "service.signal_received", "signal": signum},
            )
            shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        app.registry.start()
        logger.info(
            "Scheduler started. Press Ctrl+C to stop",
            extra={"event": "service.daemon_mode.started"},
        )

        try:
            shutdown_event.wait()
        except KeyboardInterrupt:
            logger.info(
                "Keyboard interrupt received, shutting down",
                extra={"event": "service.keyboard_interrupt"},
            )
        finally:
            app.registry.shutdown(wait=True)
            app.channel.close()
            close_database()

        logger.info(
            "Showtime Notifier stopped",
            extra={
                "event": "service.stopping",
                "uptime_seconds": round(time.time() - start_time, 2),
            },
        )
        return 0

    except ConfigurationError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        logger.error(
            f"Configuration error: {e}",
            extra={"event": "config.error", "error_type": "ConfigurationError"},
        )
        return 1
    except KeyboardInterrupt:
        print("\nShutdown requested by user", file=sys.stderr)
        return 0
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        logger.critical(
            "Fatal error during startup",
            extra={
                "event": "service.startup.failed",
                "error_type": type(e).__name__,
                "error": str(e),
            },
            exc_info=True,
        )
        return 1


if __name__ == "__main__":
    sys.exit(main())
