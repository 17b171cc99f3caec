"""Soft configuration checks that warn instead of failing."""

import warnings
from typing import Any, Dict, List


def _minute_field(pattern: Any) -> str:
    if not isinstance(pattern, str):
        return ""
    fields = pattern.split()
    return fields[0] if fields else ""


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """Inspect the raw configuration for suspicious but valid settings.

    Args:
        config_dict: Raw configuration dictionary as loaded from YAML

    Returns:
        List of warning messages
    """
    messages = []

    schedules = config_dict.get("schedules") or {}
    if isinstance(schedules, dict):
        for name in ("personal_digest", "guild_default", "cleanup"):
            minute = _minute_field(schedules.get(name))
            if minute in ("*", "*/1"):
                messages.append(
                    f"schedules.{name} fires every minute; recipients may be flooded"
                )

        digest = schedules.get("personal_digest")
        if digest and digest == schedules.get("cleanup"):
            messages.append(
                "schedules.personal_digest and schedules.cleanup share a pattern; "
                "entries may be cleaned up while the digest is running"
            )

    matching = config_dict.get("matching") or {}
    if isinstance(matching, dict):
        threshold = matching.get("title_threshold")
        if isinstance(threshold, (int, float)) and threshold > 0.6:
            messages.append(
                f"High title_threshold ({threshold}) will match almost every title"
            )

    delivery = config_dict.get("delivery") or {}
    if isinstance(delivery, dict):
        timeout = delivery.get("request_timeout")
        if isinstance(timeout, int) and timeout > 60:
            messages.append(
                f"Long delivery request_timeout ({timeout}s) can delay every job tick"
            )

    return messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message as a UserWarning."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
