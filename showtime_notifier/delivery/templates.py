"""Message rendering with Jinja2.

Templates live in ``showtime_notifier/delivery/templates/<locale>/`` and
produce chat markdown. Each delivery renders one announcement and one
message per matched item; broadcasts additionally get a thread title.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from ..config.models import SUPPORTED_LOCALES
from ..domain.models import DEFAULT_LOCALE
from ..matching.models import MatchResult
from ..utils.timestamps import to_local
from .exceptions import DeliveryTemplateError
from .features import feature_labels
from .models import DeliveryKind, DeliveryRequest, RenderedMessage

logger = logging.getLogger(__name__)

SCREENING_FORMAT = "%d.%m.%Y %H:%M"
DATE_FORMAT = "%d.%m.%Y"
SCREENINGS_COMMAND = "screenings"


class TemplateRenderer:
    """Renders delivery requests into chat messages.

    Templates are compiled once per environment and reused across calls.
    Unknown locales fall back to en-US.
    """

    def __init__(
        self,
        template_dir: str = "templates",
        max_screenings_per_item: int = 5,
    ):
        self.max_screenings_per_item = max_screenings_per_item
        self.env = Environment(
            loader=PackageLoader("showtime_notifier.delivery", template_dir),
            autoescape=False,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=False,
        )

    @staticmethod
    def resolve_locale(locale: str) -> str:
        return locale if locale in SUPPORTED_LOCALES else DEFAULT_LOCALE

    def _render(self, locale: str, name: str, context: Dict[str, Any]) -> str:
        template = self.env.get_template(f"{locale}/{name}")
        return template.render(context).strip()

    def render(self, request: DeliveryRequest, now: datetime) -> RenderedMessage:
        """Render every message of a delivery.

        Raises:
            DeliveryTemplateError: If a template is missing or a variable is undefined
        """
        locale = self.resolve_locale(request.locale)
        prefix = request.kind.value

        try:
            base_context = {
                "date": to_local(now, request.timezone).strftime(DATE_FORMAT),
                "item_count": request.item_count,
                "screenings_command": SCREENINGS_COMMAND,
            }
            announcement = self._render(locale, f"{prefix}_announcement.md.j2", base_context)
            items = [
                self._render(
                    locale,
                    f"{prefix}_item.md.j2",
                    {**base_context, **self._item_context(match, request, locale)},
                )
                for match in request.matches
            ]
            thread_title = None
            if request.kind == DeliveryKind.BROADCAST:
                thread_title = self._render(locale, "broadcast_thread.txt.j2", base_context)
                thread_title = thread_title.replace("\n", " ")

        except TemplateError as e:
            message = f"Template rendering failed: {e}"
            logger.error(message, exc_info=True)
            raise DeliveryTemplateError(message, destination=request.destination) from e

        return RenderedMessage(announcement=announcement, items=items, thread_title=thread_title)

    def _item_context(
        self, match: MatchResult, request: DeliveryRequest, locale: str
    ) -> Dict[str, Any]:
        item = match.item
        earliest = match.earliest_screening
        ordered = sorted(item.screenings, key=lambda s: s.start_time)
        shown = ordered[: self.max_screenings_per_item]

        screenings: List[Dict[str, Any]] = [
            {
                "start_time": to_local(screening.start_time, request.timezone).strftime(
                    SCREENING_FORMAT
                ),
                "auditorium": screening.auditorium,
                "features": ", ".join(feature_labels(screening.features, locale)),
            }
            for screening in shown
        ]

        return {
            "title": item.title,
            "description": item.description or "",
            "age_rating": item.age_rating or "",
            "duration_minutes": item.duration_minutes,
            "genres": ", ".join(item.genres),
            "screenings": screenings,
            "has_more_screenings": len(ordered) > len(shown),
            "earliest_screening": (
                to_local(earliest.start_time, request.timezone).strftime(SCREENING_FORMAT)
                if earliest
                else ""
            ),
            "matched_entries": ", ".join(match.entry_names),
        }
