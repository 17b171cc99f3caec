"""Batch dispatch of digests and broadcasts."""

from .dispatcher import Dispatcher
from .models import BatchReport, DeliveryFailure

__all__ = ["Dispatcher", "BatchReport", "DeliveryFailure"]
