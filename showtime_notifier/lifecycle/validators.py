"""Validation of user-supplied lifecycle values."""

import re
from datetime import date, datetime
from typing import Optional

from ..exceptions import InvalidDateError
from ..utils.timestamps import today_in_timezone

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_expiration_date(value: str) -> date:
    """Strict ``YYYY-MM-DD`` parse.

    Raises:
        InvalidDateError: On any other format or an impossible calendar date
    """
    stripped = (value or "").strip()
    if not _DATE_PATTERN.match(stripped):
        raise InvalidDateError(value, "expected format YYYY-MM-DD")
    try:
        return date.fromisoformat(stripped)
    except ValueError as e:
        raise InvalidDateError(value, str(e)) from e


def validate_expiration_date(
    value, timezone: str, now: Optional[datetime] = None
) -> date:
    """Parse (if needed) and check an expiration date.

    The date may not lie before today as seen in the owner's timezone.

    Args:
        value: ``YYYY-MM-DD`` string or a ``date``
        timezone: IANA timezone of the entry owner
        now: Reference time (defaults to the current time)

    Raises:
        InvalidDateError: If malformed or in the past
    """
    if isinstance(value, datetime):
        raise InvalidDateError(str(value), "expected a date, not a timestamp")
    parsed = value if isinstance(value, date) else parse_expiration_date(value)

    today = today_in_timezone(timezone, now)
    if parsed < today:
        raise InvalidDateError(parsed.isoformat(), f"date is before today ({today.isoformat()})")
    return parsed
