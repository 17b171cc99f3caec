"""Cron job registry."""

from .registry import (
    JobKind,
    MembershipAction,
    MembershipChange,
    ScheduledJob,
    ScheduleRegistry,
)

__all__ = [
    "ScheduleRegistry",
    "ScheduledJob",
    "JobKind",
    "MembershipAction",
    "MembershipChange",
]
