"""Data models for the matching engine."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..domain.models import ContentItem, Keyword, KeywordType, NotificationEntry


@dataclass(frozen=True)
class TaggedKeyword:
    """A keyword together with the notification entry it belongs to.

    Attributes:
        keyword: The search term
        entry_id: Store id of the owning entry (None for ad-hoc searches)
        entry_name: Name of the owning entry, shown to the recipient
    """

    keyword: Keyword
    entry_id: Optional[int] = None
    entry_name: str = ""

    @property
    def entry_key(self) -> Tuple[Optional[int], str]:
        return (self.entry_id, self.entry_name)

    @property
    def is_title(self) -> bool:
        return self.keyword.type == KeywordType.TITLE

    @property
    def value(self) -> str:
        return self.keyword.value


def tag_entry_keywords(entries: List[NotificationEntry]) -> List[TaggedKeyword]:
    """Flatten the keywords of several entries, preserving entry and keyword order."""
    return [
        TaggedKeyword(keyword=keyword, entry_id=entry.id, entry_name=entry.name)
        for entry in entries
        for keyword in entry.keywords
    ]


@dataclass
class MatchResult:
    """One content item and every keyword that matched it.

    ``item`` carries the refined screening list, i.e. only the screenings
    that satisfy the feature keywords of the contributing entries.
    """

    item: ContentItem
    keywords: List[TaggedKeyword] = field(default_factory=list)

    @property
    def entry_ids(self) -> List[int]:
        seen = []
        for tagged in self.keywords:
            if tagged.entry_id is not None and tagged.entry_id not in seen:
                seen.append(tagged.entry_id)
        return seen

    @property
    def entry_names(self) -> List[str]:
        seen = []
        for tagged in self.keywords:
            if tagged.entry_name and tagged.entry_name not in seen:
                seen.append(tagged.entry_name)
        return seen

    @property
    def earliest_screening(self):
        if not self.item.screenings:
            return None
        return min(self.item.screenings, key=lambda s: s.start_time)
