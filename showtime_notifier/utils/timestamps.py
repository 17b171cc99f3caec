"""Time helpers.

Everything the engine stores or compares is a timezone-aware UTC datetime.
Recipient-facing values (expiration dates, rendered screening times) are
converted to the recipient's IANA timezone only at the edges.
"""

from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as an aware UTC datetime.

    Naive values are assumed to already be UTC; aware values are converted.

    Example:
        >>> ensure_utc(datetime(2026, 3, 1, 12, 0)).tzinfo == timezone.utc
        True
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Accepts a trailing ``Z``, explicit offsets, naive timestamps and bare
    dates. Returns None for empty or unparseable input.

    Example:
        >>> parse_iso_datetime("2026-03-01T12:00:00Z").hour
        12
    """
    if not value or not value.strip():
        return None

    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"

    try:
        return ensure_utc(datetime.fromisoformat(cleaned))
    except ValueError:
        pass

    try:
        return ensure_utc(datetime.strptime(cleaned, "%Y-%m-%d"))
    except ValueError:
        return None


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``YYYY-MM-DD`` string; None for empty or malformed input."""
    if not value or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def format_timestamp(dt: Optional[datetime], include_microseconds: bool = False) -> str:
    """Format as ISO-8601 UTC with a 'Z' suffix; empty string for None.

    Example:
        >>> format_timestamp(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))
        '2026-03-01T12:00:00Z'
    """
    dt_utc = ensure_utc(dt)
    if dt_utc is None:
        return ""

    if include_microseconds:
        return dt_utc.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return dt_utc.strftime("%Y-%m-%dT%H:%M:%SZ")


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name}") from e


def is_valid_timezone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        get_zone(name)
    except ValueError:
        return False
    return True


def to_local(dt: datetime, tz_name: str) -> datetime:
    """Convert an aware (or naive-UTC) datetime into the named timezone."""
    return ensure_utc(dt).astimezone(get_zone(tz_name))


def today_in_timezone(tz_name: str, now: Optional[datetime] = None) -> date:
    """Calendar date at ``now`` (default: current time) in the named timezone."""
    return to_local(now or utc_now(), tz_name).date()
