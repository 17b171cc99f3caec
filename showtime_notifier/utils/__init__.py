"""Shared helpers."""

from .timestamps import (
    ensure_utc,
    format_timestamp,
    get_zone,
    is_valid_timezone,
    parse_iso_date,
    parse_iso_datetime,
    to_local,
    today_in_timezone,
    utc_now,
)

__all__ = [
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "parse_iso_date",
    "format_timestamp",
    "get_zone",
    "is_valid_timezone",
    "to_local",
    "today_in_timezone",
]
