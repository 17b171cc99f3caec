"""Messages handed to delivery channels and what they report back."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..domain.models import DEFAULT_LOCALE, DEFAULT_TIMEZONE
from ..matching.models import MatchResult


class DeliveryKind(str, Enum):
    """Personal digest to a recipient, or broadcast to a guild channel."""

    DIGEST = "digest"
    BROADCAST = "broadcast"


@dataclass
class DeliveryRequest:
    """Everything a channel needs to deliver one batch to one destination.

    Attributes:
        destination: Recipient id (digest) or channel id (broadcast)
        kind: Digest or broadcast
        matches: Matched items with their refined screenings
        locale: Locale used for rendering
        timezone: IANA timezone used for rendering screening times
        guild_id: Owning guild for broadcasts
    """

    destination: str
    kind: DeliveryKind
    matches: List[MatchResult] = field(default_factory=list)
    locale: str = DEFAULT_LOCALE
    timezone: str = DEFAULT_TIMEZONE
    guild_id: Optional[str] = None

    @property
    def item_count(self) -> int:
        return len(self.matches)


@dataclass
class RenderedMessage:
    """Rendered text of a delivery: one announcement followed by one message per item."""

    announcement: str
    items: List[str] = field(default_factory=list)
    thread_title: Optional[str] = None

    @property
    def parts(self) -> List[str]:
        return [self.announcement, *self.items]


@dataclass
class DeliveryReceipt:
    """Acknowledgement of a successful handoff."""

    destination: str
    kind: DeliveryKind
    messages_sent: int
    status_code: Optional[int] = None
