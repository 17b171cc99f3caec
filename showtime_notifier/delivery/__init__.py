"""Delivery of rendered batches to the chat platform."""

from .base import DeliveryChannel
from .exceptions import (
    DeliveryError,
    DeliveryRejectedError,
    DeliveryTemplateError,
    TransientDeliveryError,
)
from .features import feature_label, feature_labels
from .models import DeliveryKind, DeliveryReceipt, DeliveryRequest, RenderedMessage
from .templates import TemplateRenderer
from .webhook import WebhookChannel

__all__ = [
    "DeliveryChannel",
    "WebhookChannel",
    "TemplateRenderer",
    "DeliveryKind",
    "DeliveryRequest",
    "DeliveryReceipt",
    "RenderedMessage",
    "DeliveryError",
    "TransientDeliveryError",
    "DeliveryRejectedError",
    "DeliveryTemplateError",
    "feature_label",
    "feature_labels",
]
