"""Delivery channel errors."""

from typing import Optional

from ..exceptions import NotifierError


class DeliveryError(NotifierError):
    """Base class for failures while handing a message to the chat platform."""

    def __init__(self, message: str, destination: Optional[str] = None):
        super().__init__(message)
        self.destination = destination


class TransientDeliveryError(DeliveryError):
    """Relay unreachable, timed out or failing with 5xx; a later tick may succeed."""

    def __init__(
        self,
        message: str,
        destination: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, destination)
        self.status_code = status_code


class DeliveryRejectedError(DeliveryError):
    """Relay refused the message (4xx), e.g. unknown channel or missing permission."""

    def __init__(self, message: str, destination: Optional[str] = None, status_code: int = 400):
        super().__init__(message, destination)
        self.status_code = status_code


class DeliveryTemplateError(DeliveryError):
    """Rendering the message failed (missing template or variable)."""
