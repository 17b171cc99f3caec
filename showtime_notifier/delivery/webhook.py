"""HTTP relay delivery channel.

Rendered messages are POSTed as one JSON document per delivery to a relay
service that owns the chat-platform connection:

    {
      "kind": "digest" | "broadcast",
      "destination": "<recipient or channel id>",
      "guild_id": "<guild id or null>",
      "locale": "en-US",
      "thread_title": "<broadcast thread title or null>",
      "messages": ["<announcement>", "<item 1>", ...]
    }
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import requests

from ..logging import get_logger
from ..utils.timestamps import utc_now
from .base import DeliveryChannel
from .exceptions import DeliveryRejectedError, TransientDeliveryError
from .models import DeliveryReceipt, DeliveryRequest, RenderedMessage
from .templates import TemplateRenderer

logger = get_logger(__name__, component="delivery")


class WebhookChannel(DeliveryChannel):
    """Deliver batches through an HTTP relay.

    Attributes:
        url: Relay endpoint
        timeout: Request timeout in seconds
        renderer: TemplateRenderer producing the message text
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: int = 15,
        user_agent: str = "ShowtimeNotifier/1.0",
        renderer: Optional[TemplateRenderer] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not url or not url.strip():
            raise ValueError("Webhook url cannot be empty")
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got: {timeout}")

        self.url = url.strip()
        self.timeout = timeout
        self.renderer = renderer or TemplateRenderer()

        self._session = session or requests.Session()
        self._session.headers.update(
            {"User-Agent": user_agent.strip(), "Content-Type": "application/json"}
        )
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def build_payload(self, request: DeliveryRequest, rendered: RenderedMessage) -> Dict[str, Any]:
        return {
            "kind": request.kind.value,
            "destination": request.destination,
            "guild_id": request.guild_id,
            "locale": self.renderer.resolve_locale(request.locale),
            "thread_title": rendered.thread_title,
            "messages": rendered.parts,
        }

    def send(self, request: DeliveryRequest, now: Optional[datetime] = None) -> DeliveryReceipt:
        rendered = self.renderer.render(request, now or utc_now())
        payload = self.build_payload(request, rendered)

        logger.debug(
            "Posting delivery to relay",
            extra={
                "event": "delivery.request",
                "destination": request.destination,
                "kind": request.kind.value,
                "message_count": len(payload["messages"]),
            },
        )

        try:
            response = self._session.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(
                f"Relay timed out after {self.timeout}s",
                extra={"event": "delivery.timeout", "destination": request.destination},
            )
            raise TransientDeliveryError(
                f"Relay request timed out after {self.timeout}s",
                destination=request.destination,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.warning(
                f"Relay unreachable: {e}",
                extra={"event": "delivery.connection_error", "destination": request.destination},
            )
            raise TransientDeliveryError(
                f"Relay request failed: {e}", destination=request.destination
            ) from e

        if response.status_code >= 400:
            is_transient = response.status_code >= 500 or response.status_code == 429
            logger.log(
                logging.WARNING if is_transient else logging.ERROR,
                f"HTTP {response.status_code} from relay",
                extra={
                    "event": "delivery.retryable_error" if is_transient else "delivery.rejected",
                    "status_code": response.status_code,
                    "destination": request.destination,
                },
            )
            message = f"HTTP {response.status_code}: {response.reason}"
            if is_transient:
                raise TransientDeliveryError(
                    message, destination=request.destination, status_code=response.status_code
                )
            raise DeliveryRejectedError(
                message, destination=request.destination, status_code=response.status_code
            )

        return DeliveryReceipt(
            destination=request.destination,
            kind=request.kind,
            messages_sent=len(payload["messages"]),
            status_code=response.status_code,
        )

    def close(self) -> None:
        self._session.close()
