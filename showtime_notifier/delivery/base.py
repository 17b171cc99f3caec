"""Delivery channel interface."""

from abc import ABC, abstractmethod

from .models import DeliveryReceipt, DeliveryRequest


class DeliveryChannel(ABC):
    """Hands rendered batches to the chat platform.

    Implementations must raise a DeliveryError subclass on failure and
    return a receipt only once the platform accepted the whole batch.
    """

    @abstractmethod
    def send(self, request: DeliveryRequest) -> DeliveryReceipt:
        """Deliver one batch to one destination.

        Raises:
            TransientDeliveryError: Platform unreachable or temporarily failing
            DeliveryRejectedError: Platform refused the destination or payload
            DeliveryTemplateError: The batch could not be rendered
        """

    def close(self) -> None:
        """Release network resources."""
