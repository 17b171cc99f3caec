"""Registry of cron jobs keyed by (pattern, kind).

One APScheduler job exists per key. Broadcast jobs carry a membership set
of guild ids that is edited through queued ``MembershipChange`` requests
and swapped in atomically at the start of each tick, so a running batch
only ever sees a complete snapshot.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ..exceptions import InvalidScheduleError
from ..logging import get_logger
from ..logging.context import log_context
from ..utils.timestamps import utc_now

logger = get_logger(__name__, component="scheduler")

JobHandler = Callable[[FrozenSet[str]], object]


class JobKind(str, Enum):
    """What a scheduled job does when it fires."""

    GUILD_BROADCAST = "guild_broadcast"
    PERSONAL_DIGEST = "personal_digest"
    CLEANUP = "cleanup"

    @property
    def tracks_members(self) -> bool:
        return self is JobKind.GUILD_BROADCAST


class MembershipAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"


@dataclass(frozen=True)
class MembershipChange:
    """A queued edit of a job's membership, applied at the next tick."""

    action: MembershipAction
    member_id: str


class ScheduledJob:
    """State of one (pattern, kind) job.

    ``active`` is the immutable snapshot a tick dispatches over. Requests
    go to ``pending``, which is cloned from ``active`` on the first change
    and promoted by ``swap()``. Callers must hold the registry lock.
    """

    def __init__(
        self,
        pattern: str,
        kind: JobKind,
        trigger: CronTrigger,
        members: Optional[Iterable[str]] = None,
    ):
        self.pattern = pattern
        self.kind = kind
        self.trigger = trigger
        self.active: FrozenSet[str] = frozenset(members or ())
        self.pending: Optional[Set[str]] = None
        self.stopped = False

    @property
    def key(self) -> Tuple[str, JobKind]:
        return (self.pattern, self.kind)

    @property
    def job_id(self) -> str:
        return f"{self.kind.value}:{self.pattern}"

    @property
    def has_pending(self) -> bool:
        return self.pending is not None

    def request(self, change: MembershipChange) -> None:
        if self.pending is None:
            self.pending = set(self.active)
        if change.action == MembershipAction.ADD:
            self.pending.add(change.member_id)
        else:
            self.pending.discard(change.member_id)

    def swap(self) -> FrozenSet[str]:
        if self.pending is not None:
            self.active = frozenset(self.pending)
            self.pending = None
        return self.active

    def next_fire_time(self, now: Optional[datetime] = None) -> Optional[datetime]:
        if self.stopped:
            return None
        return self.trigger.get_next_fire_time(None, now or utc_now())


class ScheduleRegistry:
    """
    Owns the background scheduler and every recurring job of the process.

    Handlers are registered per ``JobKind`` and receive the membership
    snapshot of the tick (an empty set for digest and cleanup jobs).
    """

    def __init__(
        self,
        scheduler: Optional[BackgroundScheduler] = None,
        misfire_grace_time: int = 300,
    ):
        self.scheduler = scheduler or BackgroundScheduler(
            job_defaults={
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": misfire_grace_time,
            },
            timezone=timezone.utc,
        )
        self._jobs: Dict[Tuple[str, JobKind], ScheduledJob] = {}
        self._handlers: Dict[JobKind, JobHandler] = {}
        self._lock = threading.RLock()

    @staticmethod
    def validate_pattern(pattern: str) -> CronTrigger:
        """
        Build a UTC trigger from a 5-field crontab pattern.

        Raises:
            InvalidScheduleError: If the pattern cannot be parsed
        """
        if not isinstance(pattern, str) or not pattern.strip():
            raise InvalidScheduleError(str(pattern), "pattern is empty")
        try:
            return CronTrigger.from_crontab(pattern.strip(), timezone=timezone.utc)
        except (ValueError, TypeError) as e:
            raise InvalidScheduleError(pattern, str(e)) from e

    @staticmethod
    def _normalize(pattern: str) -> str:
        return " ".join(pattern.split())

    def register_handler(self, kind: JobKind, handler: JobHandler) -> None:
        with self._lock:
            self._handlers[kind] = handler

    def ensure_job(
        self,
        pattern: str,
        kind: JobKind,
        initial_members: Optional[Iterable[str]] = None,
    ) -> bool:
        """
        Create the job for (pattern, kind) unless it already exists.

        Returns:
            True if a job was created, False if one was already registered

        Raises:
            InvalidScheduleError: If the pattern is malformed; nothing is registered
        """
        trigger = self.validate_pattern(pattern)
        pattern = self._normalize(pattern)

        with self._lock:
            if (pattern, kind) in self._jobs:
                logger.warning(
                    "Job already registered, not creating a duplicate",
                    extra={"event": "scheduler.job.duplicate", "pattern": pattern, "kind": kind.value},
                )
                return False

            job = ScheduledJob(pattern, kind, trigger, initial_members)
            self.scheduler.add_job(
                self._run_tick,
                trigger=trigger,
                args=[pattern, kind],
                id=job.job_id,
                name=f"{kind.value} ({pattern})",
                replace_existing=True,
            )
            self._jobs[job.key] = job

        logger.info(
            "Scheduled job created",
            extra={
                "event": "scheduler.job.created",
                "pattern": pattern,
                "kind": kind.value,
                "members": sorted(job.active),
            },
        )
        return True

    def move_member(
        self,
        member_id: str,
        new_pattern: str,
        old_pattern: Optional[str] = None,
        kind: JobKind = JobKind.GUILD_BROADCAST,
    ) -> None:
        """
        Move a member from the job on ``old_pattern`` to the job on ``new_pattern``.

        Both edits are queued and take effect at each job's next tick.
        A missing target job is created with the member as its only member.

        Raises:
            InvalidScheduleError: If ``new_pattern`` is malformed; nothing changes
        """
        self.validate_pattern(new_pattern)
        new_pattern = self._normalize(new_pattern)

        with self._lock:
            if old_pattern is not None:
                self.remove_member(member_id, old_pattern, kind)

            target = self._jobs.get((new_pattern, kind))
            if target is None or target.stopped:
                self.ensure_job(new_pattern, kind, initial_members={member_id})
            else:
                target.request(MembershipChange(MembershipAction.ADD, member_id))

        logger.info(
            "Member moved",
            extra={
                "event": "scheduler.member.moved",
                "member_id": member_id,
                "old_pattern": old_pattern,
                "new_pattern": new_pattern,
                "kind": kind.value,
            },
        )

    def remove_member(
        self,
        member_id: str,
        pattern: str,
        kind: JobKind = JobKind.GUILD_BROADCAST,
    ) -> bool:
        """Queue removal of a member. Returns False when no job exists for the key."""
        with self._lock:
            job = self._jobs.get((self._normalize(pattern), kind))
            if job is None or job.stopped:
                return False
            job.request(MembershipChange(MembershipAction.REMOVE, member_id))
            return True

    def _run_tick(self, pattern: str, kind: JobKind) -> None:
        with self._lock:
            job = self._jobs.get((pattern, kind))
            if job is None or job.stopped:
                return
            members = job.swap()
            if kind.tracks_members and not members:
                self._stop(job)
                return
            handler = self._handlers.get(kind)

        with log_context(job_id=job.job_id):
            if handler is None:
                logger.error(
                    "No handler registered for job kind",
                    extra={"event": "scheduler.job.no_handler", "kind": kind.value},
                )
                return

            try:
                handler(members)
            except Exception as e:
                next_run = job.next_fire_time()
                logger.error(
                    f"Scheduled job failed: {e}",
                    extra={
                        "event": "scheduler.job.failed",
                        "pattern": pattern,
                        "kind": kind.value,
                        "next_run_time": next_run.isoformat() if next_run else None,
                    },
                    exc_info=True,
                )

    def _stop(self, job: ScheduledJob) -> None:
        job.stopped = True
        self._jobs.pop(job.key, None)
        try:
            self.scheduler.remove_job(job.job_id)
        except JobLookupError:
            pass
        logger.info(
            "Job has no members left, stopped",
            extra={"event": "scheduler.job.stopped", "pattern": job.pattern, "kind": job.kind.value},
        )

    def get_job(self, pattern: str, kind: JobKind) -> Optional[ScheduledJob]:
        with self._lock:
            return self._jobs.get((self._normalize(pattern), kind))

    def jobs(self) -> List[ScheduledJob]:
        with self._lock:
            return list(self._jobs.values())

    def trigger_now(self, pattern: str, kind: JobKind) -> None:
        """Run one tick of the job synchronously in the calling thread."""
        logger.info(
            "Triggering immediate run",
            extra={"event": "scheduler.trigger_now", "pattern": pattern, "kind": kind.value},
        )
        self._run_tick(self._normalize(pattern), kind)

    def get_next_run_time(self, pattern: str, kind: JobKind) -> Optional[datetime]:
        job = self.get_job(pattern, kind)
        return job.next_fire_time() if job else None

    def start(self) -> None:
        self.scheduler.start()
        logger.info(
            f"Scheduler started with {len(self._jobs)} jobs",
            extra={"event": "scheduler.started", "job_count": len(self._jobs)},
        )

    def shutdown(self, wait: bool = False) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: If True, wait for running jobs to complete before returning
        """
        logger.info(
            "Shutting down scheduler",
            extra={"event": "scheduler.stopping", "wait_for_jobs": wait},
        )
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler shutdown complete", extra={"event": "scheduler.stopped"})

    def is_running(self) -> bool:
        return self.scheduler.running
