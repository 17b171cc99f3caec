"""Recipient, entry and guild configuration operations."""

from .service import SubscriptionService

__all__ = ["SubscriptionService"]
