"""Eligibility, delivery bookkeeping, cleanup and reactivation of entries."""

from .manager import CleanupResult, LifecycleManager
from .validators import parse_expiration_date, validate_expiration_date

__all__ = [
    "CleanupResult",
    "LifecycleManager",
    "parse_expiration_date",
    "validate_expiration_date",
]
